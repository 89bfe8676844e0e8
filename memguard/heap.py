"""A guarded allocator that detects leaks and buffer overruns in tests."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from memguard.config import Config

_DONT_FAIL = -1
_END = b"END"
_END_STORED = _END + b"\0"
_ARENA_BASE = 0x1000
_BLOCKS_BASE = 0x10000


class MemoryTestFailure(AssertionError):
    """Raised when the allocator detects a leak or a corrupted block."""


class GuardedHeap:
    """Allocator that places a guard header before and a marker after each block.

    Addresses are integers; ``None`` stands for a null pointer. With
    ``exclude_stdlib_malloc`` set, blocks come from a fixed arena in LIFO
    fashion; otherwise each block is separately allocated.
    """

    def __init__(self, config: Optional[Config] = None) -> None:
        self.config = config if config is not None else Config()
        self._word = self.config.malloc_alignment()
        self._guard_size = 2 * self._word
        self._count = 0
        self._countdown = _DONT_FAIL
        self._arena: Optional[bytearray] = None
        self._heap_index = 0
        self._blocks: Dict[int, bytearray] = {}
        self._next_address = _BLOCKS_BASE
        if self.config.exclude_stdlib_malloc:
            self._arena = bytearray(self.config.internal_heap_size_bytes)

    # -- test lifecycle -------------------------------------------------

    def start_test(self) -> None:
        """Reset the allocation count and disable forced failures."""
        self._count = 0
        self._countdown = _DONT_FAIL

    def end_test(self) -> None:
        """Disable forced failures and fail if any block is still allocated."""
        self._countdown = _DONT_FAIL
        if self._count != 0:
            raise MemoryTestFailure("This test leaks!")

    def make_malloc_fail_after_count(self, countdown: int) -> None:
        """Let ``countdown`` more allocations succeed, then fail the rest."""
        self._countdown = countdown

    def allocation_count(self) -> int:
        """Number of blocks currently allocated."""
        return self._count

    # -- allocation -----------------------------------------------------

    def malloc(self, size: int) -> Optional[int]:
        """Allocate ``size`` bytes; return the address or ``None`` on failure."""
        if size < 0:
            raise ValueError("size must not be negative")
        total = self._guard_size + self._round_up(size + len(_END_STORED))

        if self._countdown != _DONT_FAIL:
            if self._countdown == 0:
                return None
            self._countdown -= 1

        if size == 0:
            return None
        if size >= 1 << (8 * self._word):
            return None
        guard = self._reserve(total)
        if guard is None:
            return None

        self._count += 1
        header = size.to_bytes(self._word, "little") + bytes(self._word)
        self._store(guard, header)
        mem = guard + self._guard_size
        self._store(mem + size, _END_STORED)
        return mem

    def calloc(self, num: int, size: int) -> Optional[int]:
        """Allocate ``num * size`` zeroed bytes."""
        total = num * size
        mem = self.malloc(total)
        if mem is None:
            return None
        self._store(mem, bytes(total))
        return mem

    def realloc(self, address: Optional[int], size: int) -> Optional[int]:
        """Resize a block, returning its (possibly new) address.

        On failure the old block is kept and ``None`` is returned.
        """
        if not address:
            return self.malloc(size)
        self._check_pointer(address)

        if self._is_overrun(address):
            self._release(address)
            raise MemoryTestFailure("Buffer overrun detected during realloc()")

        if size == 0:
            self._release(address)
            return None

        old_size = self._block_size(address)
        if old_size >= size:
            return address

        if self._arena is not None:
            old_total = self._round_up(old_size + len(_END_STORED))
            is_last = address == _ARENA_BASE + self._heap_index - old_total
            fits = (
                self._heap_index - old_total + self._round_up(size + len(_END_STORED))
                <= len(self._arena)
            )
            if is_last and fits:
                self._release(address)
                return self.malloc(size)

        new_address = self.malloc(size)
        if new_address is None:
            return None
        self._store(new_address, self.read(address, old_size))
        self._release(address)
        return new_address

    def free(self, address: Optional[int]) -> None:
        """Release a block; fail if its guards were overwritten."""
        if not address:
            return
        self._check_pointer(address)
        overrun = self._is_overrun(address)
        self._release(address)
        if overrun:
            raise MemoryTestFailure("Buffer overrun detected during free()")

    # -- memory access --------------------------------------------------

    def read(self, address: int, length: int) -> bytes:
        """Return ``length`` bytes starting at ``address``."""
        buffer, offset = self._locate(address, length)
        return bytes(buffer[offset:offset + length])

    def write(self, address: int, data: bytes) -> None:
        """Write ``data`` starting at ``address``; guard bytes may be hit too."""
        self._store(address, bytes(data))

    # -- internals ------------------------------------------------------

    def _round_up(self, size: int) -> int:
        return -(-size // self._word) * self._word

    def _reserve(self, total: int) -> Optional[int]:
        if self._arena is not None:
            if self._heap_index + total > len(self._arena):
                return None
            guard = _ARENA_BASE + self._heap_index
            self._heap_index += total
            return guard
        try:
            buffer = bytearray(total)
        except MemoryError:
            return None
        guard = self._next_address
        self._blocks[guard] = buffer
        self._next_address += self._round_up(total) + self._guard_size
        return guard

    def _locate(self, address: int, length: int) -> Tuple[bytearray, int]:
        if length < 0:
            raise ValueError("length must not be negative")
        if self._arena is not None:
            offset = address - _ARENA_BASE
            if 0 <= offset and offset + length <= len(self._arena):
                return self._arena, offset
        else:
            for base, buffer in self._blocks.items():
                if base <= address and address + length <= base + len(buffer):
                    return buffer, address - base
        raise ValueError(f"address {address:#x} is outside allocated memory")

    def _store(self, address: int, data: bytes) -> None:
        buffer, offset = self._locate(address, len(data))
        buffer[offset:offset + len(data)] = data

    def _check_pointer(self, address: int) -> None:
        guard = address - self._guard_size
        if self._arena is None:
            if guard not in self._blocks:
                raise ValueError(f"address {address:#x} is not an allocated block")
        else:
            self._locate(guard, self._guard_size)

    def _header(self, address: int) -> Tuple[int, int]:
        raw = self.read(address - self._guard_size, self._guard_size)
        size = int.from_bytes(raw[: self._word], "little")
        guard_space = int.from_bytes(raw[self._word:], "little")
        return size, guard_space

    def _block_size(self, address: int) -> int:
        return self._header(address)[0]

    def _c_string(self, address: int) -> Optional[bytes]:
        try:
            buffer, offset = self._locate(address, 1)
        except ValueError:
            return None
        end = buffer.find(b"\0", offset)
        if end < 0:
            return None
        return bytes(buffer[offset:end])

    def _is_overrun(self, address: int) -> bool:
        size, guard_space = self._header(address)
        if guard_space != 0:
            return True
        return self._c_string(address + size) != _END

    def _release(self, address: int) -> None:
        guard = address - self._guard_size
        self._count -= 1
        if self._arena is not None:
            block = self._round_up(self._block_size(address) + len(_END_STORED))
            if address == _ARENA_BASE + self._heap_index - block:
                self._heap_index -= self._guard_size + block
        else:
            self._blocks.pop(guard, None)