"""Tests for runtime wiring."""

from unittest.mock import patch

import pytest

from deckhand.core.identity import TargetIdentity
from deckhand.runtime import Deckhand


def test_services_share_one_gateway(settings):
    deckhand = Deckhand(settings, identity=TargetIdentity())

    assert deckhand.containers.gateway is deckhand.gateway
    assert deckhand.stacks.gateway is deckhand.gateway
    assert deckhand.updates.containers is deckhand.containers
    assert deckhand.backups.backup_root == settings.backup_root


def test_identity_resolved_from_settings(settings):
    deckhand = Deckhand(settings.model_copy(update={"podman_user": "alice"}))
    assert deckhand.identity == TargetIdentity(user="alice")


@pytest.mark.asyncio
async def test_close_terminates_streams(settings):
    async with Deckhand(
        settings.model_copy(update={"engine_binary": "sh"}), identity=TargetIdentity()
    ) as deckhand:
        process = await deckhand.gateway.spawn(["-c", "exec sleep 10"])
    assert process.returncode is not None
    assert deckhand.gateway.active_processes == 0


def test_from_config(tmp_path):
    config_path = tmp_path / "deckhand.yml"
    config_path.write_text(f"backup_root: {tmp_path / 'bk'}\nengine_binary: /opt/podman\n")

    with patch("deckhand.core.config_loader.load_dotenv"), patch(
        "deckhand.core.config_loader.USER_CONFIG_FILE", tmp_path / "none.yml"
    ):
        deckhand = Deckhand.from_config(config_path)

    assert deckhand.settings.engine_binary == "/opt/podman"
    assert deckhand.backups.backup_root == tmp_path / "bk"
