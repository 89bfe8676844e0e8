# memguard

A simulated guarded heap for use inside test suites. `GuardedHeap` hands out
integer addresses into memory it manages itself, and it catches the mistakes
a test is meant to catch:

- **Leaks**: `end_test()` raises `MemoryTestFailure("This test leaks!")` when
  blocks allocated since `start_test()` are still allocated.
- **Buffer overruns**: each block has a guard header in front of it and an
  `"END"` marker after it. If a write goes past the end of a block, or puts a
  non-zero value into the guard word just before it, `free()` or `realloc()`
  raises `MemoryTestFailure`.
- **Forced allocation failures**: after `make_malloc_fail_after_count(n)`, the
  next `n` allocations succeed and every later one returns `None`. Use this to
  exercise out-of-memory paths.

## Installing

```
pip install memguard
```

The package needs no third-party libraries.

## Usage

```python
from memguard.config import Config
from memguard.heap import GuardedHeap, MemoryTestFailure

heap = GuardedHeap(Config())
heap.start_test()

addr = heap.malloc(10)
heap.write(addr, b"123456789\0")
addr = heap.realloc(addr, 15)
assert heap.read(addr, 9) == b"123456789"
heap.free(addr)

heap.end_test()   # raises MemoryTestFailure if anything is still allocated
```

The allocator follows C conventions:

- `malloc(size)` returns an address, or `None` when the size is zero, when a
  forced failure is active, or when there is no room.
- `calloc(num, size)` allocates `num * size` bytes and zeroes them.
- `realloc(None, size)` behaves like `malloc`.
- `realloc(addr, 0)` frees the block and returns `None`.
- If the block is already large enough, `realloc` returns the same address.
- If `realloc` cannot allocate, it returns `None` and the old block stays
  allocated.
- `free(None)` does nothing.
- `allocation_count()` reports how many blocks are currently allocated.

Block contents are reached with `read(address, length)` and
`write(address, data)`. Both raise `ValueError` when the range falls outside
memory the heap manages. `free()` and `realloc()` also raise `ValueError` for
an address the heap never handed out.

### Catching overruns

```python
addr = heap.malloc(10)
heap.write(addr + 10, b"\xff")   # one byte past the end
try:
    heap.free(addr)
except MemoryTestFailure as err:
    print(err)                   # Buffer overrun detected during free()
```

`free()` releases the block before it raises. When `realloc()` finds an
overrun, it releases the block and then raises
`"Buffer overrun detected during realloc()"`.

### Fixed internal heap

When `Config.exclude_stdlib_malloc` is set, blocks come from one fixed array
of `internal_heap_size_bytes` bytes (256 by default). Allocation always
happens at the end of the used region. A free gives space back only when the
block freed is the last one allocated, so a block freed out of LIFO order
leaves its space stranded. In this mode, `realloc` grows the last block in
place when there is room after it.

### Configuration

`Config` is a frozen dataclass. It describes the integer widths (16, 32 or
64), floating-point support, precisions and heap options. Invalid widths,
non-positive precisions and a non-positive heap size raise `ConfigError`.
Its methods are:

- `malloc_alignment()`: the pointer width in bytes. Block sizes are rounded
  up to this value.
- `supports_64()`: whether 64-bit support is enabled or implied by a width.
- `float_enabled()` and `double_enabled()`: whether single and double
  precision support are on.

A `Config` can also be built from C `#define` lines:

```python
from memguard.config import load_config

config = load_config("""
#define UNITY_POINTER_WIDTH 32
#define UNITY_EXCLUDE_STDLIB_MALLOC
#define UNITY_INTERNAL_HEAP_SIZE_BYTES 256
""")
heap = GuardedHeap(config)
```

`load_config` and `parse_defines` treat the text as follows:

- Comments are skipped.
- `#undef` removes a name defined earlier.
- `parse_defines` returns the raw name-to-value mapping of the active
  definitions.
- `load_config` raises `ConfigError` for a value it cannot read and for an
  unterminated comment.

## What it does not do

memguard does not intercept Python's own memory allocation, and it does not
watch real native memory. It only checks the simulated blocks that your test
code allocates and accesses through a `GuardedHeap`. Apart from the pointer
width and the heap options, the configuration values are recorded on `Config`
and are not used by the heap.

## Running the tests

```
pip install memguard[test]
pytest
```