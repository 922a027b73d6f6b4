from shutil import which

from pytest import fixture, skip

from jsbridge import Context


@fixture
def node():
    if which("node") is None:
        skip("Node is not installed")


@fixture
def ctx(node):
    with Context() as ctx:
        yield ctx
