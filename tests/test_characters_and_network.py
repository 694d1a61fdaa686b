import asyncio
import socket

import pytest

from voicelink.characters import CHARACTERS, DEFAULT_CHARACTER, get_character
from voicelink.core.errors import ErrorKind, NetworkUnavailableError, classify_failure
from voicelink.core.network import probe_network


class TestCharacters:
    def test_registry(self):
        assert set(CHARACTERS) == {"shinchan", "bluey"}
        assert get_character(DEFAULT_CHARACTER).key == DEFAULT_CHARACTER

    def test_voices(self):
        assert get_character("shinchan").voice_id == "Kore"
        assert get_character("BLUEY").voice_id == "Puck"

    def test_unknown_key(self):
        with pytest.raises(ValueError):
            get_character("doraemon")


class TestProbeNetwork:
    @pytest.mark.asyncio
    async def test_resolvable_host(self, monkeypatch):
        async def resolve(host, port, **kwargs):
            return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("203.0.113.7", port))]

        monkeypatch.setattr(asyncio.get_running_loop(), "getaddrinfo", resolve)

        await probe_network("generativelanguage.googleapis.com")

    @pytest.mark.asyncio
    async def test_resolution_failure(self, monkeypatch):
        async def resolve(host, port, **kwargs):
            raise socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution")

        monkeypatch.setattr(asyncio.get_running_loop(), "getaddrinfo", resolve)

        with pytest.raises(NetworkUnavailableError) as excinfo:
            await probe_network("generativelanguage.googleapis.com")

        assert classify_failure(excinfo.value) is ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_no_addresses(self, monkeypatch):
        async def resolve(host, port, **kwargs):
            return []

        monkeypatch.setattr(asyncio.get_running_loop(), "getaddrinfo", resolve)

        with pytest.raises(NetworkUnavailableError):
            await probe_network("generativelanguage.googleapis.com")
