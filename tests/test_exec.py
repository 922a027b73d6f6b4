from pytest import raises

from jsbridge.exceptions import *


def test_basic(ctx):
    assert ctx.exec_string("a = 1", __file__) is None
    assert ctx.eval_string("a", __file__) == 1.0


def test_doesnt_try_convert(ctx):
    ctx.exec_string("a = {b:1}", __file__)
    assert ctx.eval_string("a.b", __file__) == 1.0

    ctx.exec_string("var c = {}; c.self = c; c", __file__)
    ctx.exec_string("a = function() {}", __file__)


def test_requires_string(ctx):
    with raises(TypeError):
        ctx.exec_string(["a = 1"], __file__)


def test_reference_error(ctx):
    with raises(JavaScriptReferenceError):
        ctx.exec_string("fail", __file__)


def test_syntax_error(ctx):
    with raises(JavaScriptSyntaxError):
        ctx.exec_string("{", __file__)


def test_type_error(ctx):
    with raises(JavaScriptTypeError):
        ctx.exec_string("null.fail", __file__)


def test_error_keeps_context_usable(ctx):
    ctx.exec_string("a = 1", __file__)

    with raises(JavaScriptReferenceError):
        ctx.exec_string("a = fail", __file__)

    assert ctx.eval_string("a", __file__) == 1.0
