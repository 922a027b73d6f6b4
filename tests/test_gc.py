import gc
from concurrent.futures import ThreadPoolExecutor

from jsbridge import ComplexObject


def test_instance_is_shared():
    a = ComplexObject.instance()
    assert ComplexObject.instance() is a
    assert a
    assert repr(a) == "<ComplexObject>"


def test_survives_bad_people():
    ComplexObject._ref = None

    # Generate some garbage
    for _ in range(100):
        [" " * 100 for _ in range(1000)]

    gc.collect()
    assert ComplexObject.instance()


def test_rebuilt_after_collection():
    first = ComplexObject.instance()
    del first
    gc.collect()

    second = ComplexObject.instance()
    assert second
    assert second == ComplexObject()
    assert hash(second) == hash(ComplexObject())
    assert ComplexObject._ref() is second


def test_concurrent_rebuild():
    ComplexObject._ref = None

    with ThreadPoolExecutor(8) as pool:
        instances = list(pool.map(lambda _: ComplexObject.instance(), range(64)))

    assert all(instances)
    assert len({id(i) for i in instances}) == 1


def test_complex_from_engine_after_gc(ctx):
    assert ctx.eval_string("a = function() {}", __file__)
    ComplexObject._ref = None
    gc.collect()
    assert ctx.eval_string("a", __file__)
    assert ctx.get_prop("a") == ComplexObject.instance()
