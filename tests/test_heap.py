import pytest

from memguard.config import Config
from memguard.heap import GuardedHeap, MemoryTestFailure

HEAP_SIZE = 256


@pytest.fixture
def heap():
    guarded = GuardedHeap(Config())
    guarded.start_test()
    yield guarded
    guarded.end_test()


@pytest.fixture
def arena():
    guarded = GuardedHeap(Config(exclude_stdlib_malloc=True))
    guarded.start_test()
    yield guarded
    guarded.end_test()


def _assert_all_free_lifo(guarded, first):
    probe = guarded.malloc(10)
    guarded.free(probe)
    assert probe == first, "Memory was stranded, free in LIFO order"


def test_force_malloc_fail(heap):
    heap.make_malloc_fail_after_count(1)
    m = heap.malloc(10)
    assert m is not None
    assert heap.malloc(10) is None
    heap.free(m)


def test_realloc_smaller_is_unchanged(heap):
    m1 = heap.malloc(10)
    m2 = heap.realloc(m1, 5)
    assert m1 is not None
    assert m2 == m1
    heap.free(m2)


def test_realloc_same_is_unchanged(heap):
    m1 = heap.malloc(10)
    m2 = heap.realloc(m1, 10)
    assert m1 is not None
    assert m2 == m1
    heap.free(m2)


def test_realloc_larger_needed(heap):
    m1 = heap.malloc(10)
    assert m1 is not None
    heap.write(m1, b"123456789\0")
    m2 = heap.realloc(m1, 15)
    assert heap.read(m2, 10) == b"123456789\0"
    heap.free(m2)


def test_realloc_null_pointer_is_like_malloc(heap):
    m = heap.realloc(None, 15)
    assert m is not None
    assert heap.allocation_count() == 1
    heap.free(m)


def test_realloc_size_zero_frees_mem_and_returns_null(heap):
    m1 = heap.malloc(10)
    assert heap.realloc(m1, 0) is None
    assert heap.allocation_count() == 0


def test_calloc_fills_with_zero(heap):
    m = heap.calloc(3, 1)
    assert m is not None
    assert heap.read(m, 3) == b"\x00\x00\x00"
    heap.free(m)


def test_free_null_safety(heap):
    heap.free(None)
    assert heap.allocation_count() == 0


def test_detects_leak(heap):
    m = heap.malloc(10)
    assert m is not None
    with pytest.raises(MemoryTestFailure, match="This test leaks!"):
        heap.end_test()
    heap.free(m)
    assert heap.allocation_count() == 0


def test_buffer_overrun_found_during_free(heap):
    m = heap.malloc(10)
    assert m is not None
    heap.write(m + 10, b"\xff")
    with pytest.raises(MemoryTestFailure, match=r"Buffer overrun detected during free\(\)"):
        heap.free(m)
    assert heap.allocation_count() == 0


def test_buffer_overrun_found_during_realloc(heap):
    m = heap.malloc(10)
    assert m is not None
    heap.write(m + 10, b"\xff")
    with pytest.raises(MemoryTestFailure, match=r"Buffer overrun detected during realloc\(\)"):
        heap.realloc(m, 100)
    assert heap.allocation_count() == 0


def test_buffer_guard_write_found_during_free(heap):
    m = heap.malloc(10)
    assert m is not None
    heap.write(m - 1, b"\x00")  # a zero is not detected
    heap.write(m - 2, b"\x01")
    with pytest.raises(MemoryTestFailure, match=r"Buffer overrun detected during free\(\)"):
        heap.free(m)


def test_guard_write_of_zero_is_not_detected(heap):
    m = heap.malloc(10)
    heap.write(m - 1, b"\x00")
    heap.free(m)
    assert heap.allocation_count() == 0


def test_buffer_guard_write_found_during_realloc(heap):
    m = heap.malloc(10)
    assert m is not None
    heap.write(m - 1, b"\x0a")
    with pytest.raises(MemoryTestFailure, match=r"Buffer overrun detected during realloc\(\)"):
        heap.realloc(m, 100)


def test_malloc_past_buffer_fails(arena):
    m = arena.malloc(HEAP_SIZE // 2 + 1)
    n = arena.malloc(HEAP_SIZE // 2)
    arena.free(m)
    assert m is not None
    assert n is None
    _assert_all_free_lifo(arena, m)


def test_calloc_past_buffer_fails(arena):
    m = arena.calloc(1, HEAP_SIZE // 2 + 1)
    n = arena.calloc(1, HEAP_SIZE // 2)
    arena.free(m)
    assert m is not None
    assert n is None
    _assert_all_free_lifo(arena, m)


def test_malloc_then_realloc_grows_memory_in_place(arena):
    m = arena.malloc(HEAP_SIZE // 2 + 1)
    n = arena.realloc(m, HEAP_SIZE // 2 + 9)
    arena.free(n)
    assert m is not None
    assert n == m
    _assert_all_free_lifo(arena, m)


def test_realloc_fail_does_not_free_mem(arena):
    m = arena.malloc(HEAP_SIZE // 2)
    n1 = arena.malloc(10)
    out_of_mem = arena.realloc(n1, HEAP_SIZE // 2 + 1)
    n2 = arena.malloc(10)

    arena.free(n2)
    if out_of_mem is None:
        arena.free(n1)
    arena.free(m)

    assert m is not None
    assert out_of_mem is None
    assert n2 != n1
    _assert_all_free_lifo(arena, m)


def test_in_place_growth_keeps_data(arena):
    m = arena.malloc(8)
    arena.write(m, b"abcdefgh")
    n = arena.realloc(m, 20)
    assert n == m
    assert arena.read(n, 8) == b"abcdefgh"
    arena.free(n)


def test_end_marker_follows_block(heap):
    m = heap.malloc(5)
    assert heap.read(m + 5, 4) == b"END\0"
    heap.free(m)


def test_allocation_count_tracks_blocks(heap):
    blocks = [heap.malloc(4) for _ in range(3)]
    assert heap.allocation_count() == 3
    for block in blocks:
        heap.free(block)
    assert heap.allocation_count() == 0


def test_malloc_zero_returns_none(heap):
    assert heap.malloc(0) is None
    assert heap.allocation_count() == 0


def test_start_test_clears_forced_failure(heap):
    heap.make_malloc_fail_after_count(0)
    assert heap.malloc(4) is None
    heap.start_test()
    m = heap.malloc(4)
    assert m is not None
    heap.free(m)


def test_free_of_unknown_address_raises(heap):
    with pytest.raises(ValueError):
        heap.free(0x12345)


def test_read_outside_memory_raises(heap):
    with pytest.raises(ValueError):
        heap.read(0x10, 4)