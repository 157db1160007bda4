"""
tests/test_chain.py — Plugin discovery and the challenge/verify chain

Registry tests write throwaway plugin files into tmp_path; chain tests use a
static registry so each plugin's behaviour is spelled out inline.
"""

from __future__ import annotations

import os
import textwrap

import pytest

from passkey_auth.auth.chain import GENERIC_FAILURE, AuthChain
from passkey_auth.auth.context import RequestContext
from passkey_auth.auth.registry import DEFAULT_PRIORITY, AuthPlugin, PluginRegistry


PLUGIN_BODY = textwrap.dedent("""
    def check(ctx, user):
        return {"required": False}

    def verify(ctx, user):
        return {"success": True}
""")


def write_plugin(directory, fname, name, priority=None):
    header = f"name = {name!r}\n"
    if priority is not None:
        header += f"priority = {priority}\n"
    (directory / fname).write_text(header + PLUGIN_BODY)


# --- registry -------------------------------------------------------------------------------------

def test_priority_order_and_ties(tmp_path):
    write_plugin(tmp_path, "a_totp.py", "totp", 60)
    write_plugin(tmp_path, "b_first.py", "first", 10)
    write_plugin(tmp_path, "c_tie1.py", "tie1", 30)
    write_plugin(tmp_path, "d_tie2.py", "tie2", 30)
    write_plugin(tmp_path, "e_default.py", "dflt")

    names = [p.name for p in PluginRegistry(str(tmp_path)).plugins()]
    assert names == ["first", "tie1", "tie2", "dflt", "totp"]


def test_default_priority(tmp_path):
    write_plugin(tmp_path, "x.py", "x")
    (plugin,) = PluginRegistry(str(tmp_path)).plugins()
    assert plugin.priority == DEFAULT_PRIORITY


def test_non_integer_priority_falls_back(tmp_path):
    write_plugin(tmp_path, "x.py", "x", priority='"high"')
    (plugin,) = PluginRegistry(str(tmp_path)).plugins()
    assert plugin.priority == DEFAULT_PRIORITY


def test_broken_plugins_are_skipped(tmp_path):
    write_plugin(tmp_path, "good.py", "good")
    (tmp_path / "syntax.py").write_text("def broken(:\n")
    (tmp_path / "raises.py").write_text("raise RuntimeError('import-time failure')\n")
    (tmp_path / "noverify.py").write_text("name = 'half'\ndef check(ctx, user):\n    return {}\n")
    (tmp_path / "noname.py").write_text("def check(c, u):\n    return {}\ndef verify(c, u):\n    return {}\n")
    write_plugin(tmp_path, "_private.py", "private")
    (tmp_path / "README.txt").write_text("not a plugin")

    assert [p.name for p in PluginRegistry(str(tmp_path)).plugins()] == ["good"]


def test_plugin_object_form(tmp_path):
    (tmp_path / "obj.py").write_text(textwrap.dedent("""
        class _Plugin:
            name = "objplug"
            priority = 5

            def check(self, ctx, user):
                return {"required": False}

            def verify(self, ctx, user):
                return {"success": True}

        plugin = _Plugin()
    """))
    (found,) = PluginRegistry(str(tmp_path)).plugins()
    assert (found.name, found.priority) == ("objplug", 5)


def test_disabled_plugin_never_returned(tmp_path):
    write_plugin(tmp_path, "a.py", "alpha")
    write_plugin(tmp_path, "b.py", "beta")
    registry = PluginRegistry(str(tmp_path), disabled=frozenset({"beta"}))
    for _ in range(3):
        assert [p.name for p in registry.plugins()] == ["alpha"]


def test_discovery_is_cached_until_invalidated(tmp_path):
    write_plugin(tmp_path, "a.py", "alpha")
    registry = PluginRegistry(str(tmp_path))
    assert [p.name for p in registry.plugins()] == ["alpha"]

    write_plugin(tmp_path, "b.py", "beta")
    assert [p.name for p in registry.plugins()] == ["alpha"]

    registry.invalidate()
    assert [p.name for p in registry.plugins()] == ["alpha", "beta"]


def test_global_switch_off_never_scans(tmp_path, monkeypatch):
    write_plugin(tmp_path, "a.py", "alpha")

    def boom(path):
        raise AssertionError("plugin directory scanned while disabled")

    monkeypatch.setattr(os, "listdir", boom)
    assert PluginRegistry(str(tmp_path), enabled=False).plugins() == []


def test_missing_plugin_dir(tmp_path):
    assert PluginRegistry(str(tmp_path / "absent")).plugins() == []


# --- chain ----------------------------------------------------------------------------------------

class StaticRegistry:
    def __init__(self, *plugins):
        self._plugins = list(plugins)

    def plugins(self):
        return list(self._plugins)


def make(name, priority=50, check=None, verify=None):
    return AuthPlugin(
        name=name,
        priority=priority,
        check=check or (lambda ctx, user: {"required": False}),
        verify=verify or (lambda ctx, user: {"success": True}),
    )


def required(field_name, message="", html=None):
    return lambda ctx, user: {
        "required": True,
        "fields": [{"name": field_name, "type": "text"}],
        "message": message,
        "html": html,
    }


def test_no_plugins_means_no_challenge():
    out = AuthChain(StaticRegistry()).collect_challenge(RequestContext(), "root")
    assert out.pending is False
    assert out.html is None
    assert out.session is None


def test_required_plugins_aggregate():
    chain = AuthChain(StaticRegistry(
        make("otp", 10, check=required("otp_code", "Enter your code")),
        make("decor", 20, check=lambda c, u: {"required": False, "html": "<b>decor</b>"}),
        make("pin", 30, check=required("pin", "Enter your PIN", html="<i>pin</i>")),
    ))
    out = chain.collect_challenge(RequestContext(), "root")

    assert out.pending is True
    assert out.plugin == "otp"
    assert [f["name"] for f in out.fields] == ["otp_code", "pin"]
    assert out.message == "Enter your code\nEnter your PIN"
    assert out.html == "<i>pin</i>"


def test_non_required_html_is_decoration():
    chain = AuthChain(StaticRegistry(
        make("a", check=lambda c, u: {"required": False, "html": "<p>one</p>"}),
        make("b", check=lambda c, u: {"required": False, "html": "<p>two</p>"}),
    ))
    out = chain.collect_challenge(RequestContext(), "root")
    assert out.pending is False
    assert out.html == "<p>one</p>\n<p>two</p>"


def test_session_from_check_is_captured():
    sentinel = object()
    chain = AuthChain(StaticRegistry(
        make("passkey", 20, check=lambda c, u: {"required": False, "session": sentinel}),
        make("late", 70, check=lambda c, u: {"required": False, "session": object()}),
    ))
    out = chain.collect_challenge(RequestContext(), "root")
    assert out.pending is False
    assert out.session is sentinel


def test_session_after_pending_plugin_is_ignored():
    chain = AuthChain(StaticRegistry(
        make("otp", 10, check=required("otp_code")),
        make("passkey", 20, check=lambda c, u: {"required": False, "session": object()}),
    ))
    out = chain.collect_challenge(RequestContext(), "root")
    assert out.pending is True
    assert out.session is None


def test_raising_check_is_ignored():
    def boom(ctx, user):
        raise RuntimeError("plugin bug")

    chain = AuthChain(StaticRegistry(
        make("buggy", 10, check=boom),
        make("otp", 20, check=required("otp_code")),
    ))
    out = chain.collect_challenge(RequestContext(), "root")
    assert out.pending is True
    assert out.plugin == "otp"


@pytest.mark.parametrize("value", [None, "yes", 42, ["required"], {"required": "true"}])
def test_malformed_check_result_means_not_required(value):
    chain = AuthChain(StaticRegistry(make("odd", check=lambda c, u: value)))
    assert chain.collect_challenge(RequestContext(), "root").pending is False


def test_check_runs_once_per_attempt():
    calls = []

    def counting(ctx, user):
        calls.append(user)
        return {"required": True}

    chain = AuthChain(StaticRegistry(make("once", check=counting)))
    ctx = RequestContext()
    chain.collect_challenge(ctx, "root")
    assert chain.verify_challenge(ctx, "root").success is True
    assert calls == ["root"]


def test_verify_short_circuits_on_first_failure():
    called = []

    def verifier(name, ok, message=None):
        def _verify(ctx, user):
            called.append(name)
            return {"success": ok, "message": message} if message else {"success": ok}
        return _verify

    chain = AuthChain(StaticRegistry(
        make("one", 10, check=required("a"), verify=verifier("one", True)),
        make("skip", 15, verify=verifier("skip", False)),
        make("two", 20, check=required("b"), verify=verifier("two", False, "Wrong PIN")),
        make("three", 30, check=required("c"), verify=verifier("three", True)),
    ))
    out = chain.verify_challenge(RequestContext(), "root")

    assert out.success is False
    assert out.plugin == "two"
    assert out.message == "Wrong PIN"
    assert called == ["one", "two"]


def test_verify_failure_without_message_is_generic():
    chain = AuthChain(StaticRegistry(
        make("p", check=required("x"), verify=lambda c, u: {"success": False}),
    ))
    assert chain.verify_challenge(RequestContext(), "root").message == GENERIC_FAILURE


def test_raising_verify_fails_generically():
    def boom(ctx, user):
        raise ValueError("secret detail")

    chain = AuthChain(StaticRegistry(make("p", check=required("x"), verify=boom)))
    out = chain.verify_challenge(RequestContext(), "root")
    assert out.success is False
    assert out.message == GENERIC_FAILURE
    assert "secret" not in out.message


def test_verify_with_nothing_required_succeeds():
    chain = AuthChain(StaticRegistry(make("a"), make("b")))
    assert chain.verify_challenge(RequestContext(), "root").success is True
