"""Builders for fake Anthropic replies."""

from types import SimpleNamespace


def text_reply(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def tool_reply(data):
    return SimpleNamespace(content=[SimpleNamespace(type="tool_use", input=data)])
