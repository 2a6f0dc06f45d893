from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from conftest import write_manifest

from contao_manager.composer.environment import Environment
from contao_manager.composer.locker import content_hash_for
from contao_manager.composer.status import ComposerStatusInspector
from contao_manager.errors import ServiceUnavailableError
from contao_manager.i18n import Translator
from contao_manager.server_info import ServerInfo

pytestmark = [
    allure.epic("Composer Status"),
    allure.feature("Manifest, Lock & Vendor State"),
]

CONTAO_MANIFEST = {"require": {"contao/manager-bundle": "4.13.*"}}


def _inspect(environment: Environment, php_executable: Path, locale: str = "en") -> dict:
    inspector = ComposerStatusInspector(
        environment=environment,
        server_info=ServerInfo(str(php_executable)),
        translator=Translator(locale),
    )
    return inspector.inspect().to_dict()


def test_missing_manifest_reports_nothing_found(environment, php_executable) -> None:
    assert _inspect(environment, php_executable) == {
        "json": {"found": False, "valid": False, "error": None},
        "lock": {"found": False, "fresh": False},
        "vendor": {"found": False},
    }


def test_valid_manifest_without_lock(environment, project_dir, php_executable) -> None:
    write_manifest(project_dir, CONTAO_MANIFEST)
    (project_dir / "vendor").mkdir()

    state = _inspect(environment, php_executable)

    assert state["json"] == {"found": True, "valid": True, "error": None}
    assert state["lock"] == {"found": False, "fresh": False}
    assert state["vendor"] == {"found": True}


def test_fresh_and_stale_lock(environment, project_dir, php_executable) -> None:
    contents = write_manifest(project_dir, CONTAO_MANIFEST)
    lock_file = project_dir / "composer.lock"
    lock_file.write_text(
        json.dumps({"packages": [], "content-hash": content_hash_for(contents)}),
        "utf-8",
    )

    assert _inspect(environment, php_executable)["lock"] == {"found": True, "fresh": True}

    write_manifest(project_dir, {"require": {"contao/manager-bundle": "4.9.*"}})

    assert _inspect(environment, php_executable)["lock"] == {"found": True, "fresh": False}


def test_unparseable_manifest_is_invalid(environment, project_dir, php_executable) -> None:
    write_manifest(project_dir, '{"require": ')

    state = _inspect(environment, php_executable)

    assert state["json"]["found"] is True
    assert state["json"]["valid"] is False
    assert state["json"]["error"].startswith("The composer.json is invalid: ")
    assert "does not contain valid JSON" in state["json"]["error"]
    assert state["lock"] == {"found": False, "fresh": False}


def test_schema_violation_is_invalid(environment, project_dir, php_executable) -> None:
    write_manifest(project_dir, {"require": {"contao/manager-bundle": 413}})

    state = _inspect(environment, php_executable)

    assert state["json"]["found"] is True
    assert state["json"]["valid"] is False
    assert "require.contao/manager-bundle : " in state["json"]["error"]


def test_broken_lock_is_reported_as_invalid_manifest(
    environment,
    project_dir,
    php_executable,
) -> None:
    write_manifest(project_dir, CONTAO_MANIFEST)
    (project_dir / "composer.lock").write_text("not json", "utf-8")

    state = _inspect(environment, php_executable)

    assert state["json"]["valid"] is False
    assert "composer.lock" in state["json"]["error"]
    assert state["lock"] == {"found": False, "fresh": False}


def test_foreign_manifest_presents_as_missing(environment, project_dir, php_executable) -> None:
    write_manifest(project_dir, {"require": {"symfony/console": "^6.0"}})
    (project_dir / "composer.lock").write_text('{"packages": []}', "utf-8")

    state = _inspect(environment, php_executable)

    assert state["json"] == {"found": False, "valid": False, "error": None}
    assert state["lock"] == {"found": False, "fresh": False}


def test_error_message_is_localized(environment, project_dir, php_executable) -> None:
    write_manifest(project_dir, "[1,")

    state = _inspect(environment, php_executable, locale="de_DE")

    assert state["json"]["error"].startswith("Die composer.json ist ungültig: ")


def test_missing_php_raises_service_unavailable(environment, project_dir, tmp_path) -> None:
    write_manifest(project_dir, CONTAO_MANIFEST)
    inspector = ComposerStatusInspector(
        environment=environment,
        server_info=ServerInfo(str(tmp_path / "no-such-php")),
        translator=Translator("en"),
    )

    with pytest.raises(ServiceUnavailableError, match="Missing hosting configuration") as caught:
        inspector.inspect()
    assert caught.value.config_path == "/api/server/config"


def test_translator_falls_back_to_english_and_message_id() -> None:
    translator = Translator("fr")

    assert translator.locale == "en"
    assert translator.trans("boot.composer.invalid", exception="x") == (
        "The composer.json is invalid: x"
    )
    assert translator.trans("unknown.message") == "unknown.message"


def test_lock_is_not_checked_without_manifest(environment, project_dir, php_executable) -> None:
    (project_dir / "composer.lock").write_text("not json", "utf-8")
    (project_dir / "vendor").mkdir()

    assert _inspect(environment, php_executable) == {
        "json": {"found": False, "valid": False, "error": None},
        "lock": {"found": False, "fresh": False},
        "vendor": {"found": False},
    }


def test_non_utf8_manifest_is_invalid(environment, project_dir, php_executable) -> None:
    (project_dir / "composer.json").write_bytes(b'{"require": {"contao/manager-bundle": "\xff"}}')

    state = _inspect(environment, php_executable)

    assert state["json"]["found"] is True
    assert state["json"]["valid"] is False
    assert "is not UTF-8 encoded" in state["json"]["error"]
    assert state["lock"] == {"found": False, "fresh": False}


def test_unreadable_manifest_is_invalid(environment, project_dir, php_executable) -> None:
    (project_dir / "composer.json").mkdir()

    state = _inspect(environment, php_executable)

    assert state["json"]["found"] is True
    assert state["json"]["valid"] is False
    assert "could not be read" in state["json"]["error"]
