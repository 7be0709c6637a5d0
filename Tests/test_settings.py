from dataclasses import replace

import pytest

from face_redactor.errors import ConfigurationError
from face_redactor.redaction_types import AnonymizeMode
from face_redactor.settings import (
    DEFAULT_ACCEPTED_LABELS,
    DEFAULT_MODEL_ID,
    RedactionSettings,
    parse_labels,
    settings_from_env,
    settings_from_params,
)


def test_defaults():
    settings = RedactionSettings().validate()
    assert settings.anonymize_mode is AnonymizeMode.PIXELATE
    assert settings.pixel_block_size == 15
    assert settings.blur_radius == 50.0
    assert settings.face_fraction == 0.4
    assert settings.scale == 0.5
    assert settings.detection_threshold == 0.5
    assert settings.accepted_labels == DEFAULT_ACCEPTED_LABELS
    assert settings.output_quality == 0.9
    assert settings.output_format == "jpeg"
    assert settings.detector_model_id == DEFAULT_MODEL_ID
    assert 1 <= settings.max_workers <= 4


@pytest.mark.parametrize(
    "overrides",
    [
        {"pixel_block_size": 0},
        {"blur_radius": 0.0},
        {"face_fraction": 0.0},
        {"face_fraction": 1.5},
        {"target_ppi": 0.0},
        {"source_ppi": -1.0},
        {"detection_threshold": 1.1},
        {"accepted_labels": ()},
        {"output_quality": 0.0},
        {"output_format": "gif"},
        {"max_workers": 0},
        {"anonymize_mode": "smudge"},
    ],
)
def test_validate_rejects(overrides):
    with pytest.raises(ConfigurationError):
        replace(RedactionSettings(), **overrides).validate()


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        replace(RedactionSettings(), max_workers=-1).validate()


def test_settings_from_env():
    env = {
        "REDACT_ANONYMIZE_MODE": "Blur",
        "REDACT_BLUR_RADIUS": "12.5",
        "REDACT_TARGET_PPI": "300",
        "REDACT_ACCEPTED_LABELS": "person, dog ,",
        "REDACT_OUTPUT_FORMAT": "JPG",
        "REDACT_MAX_WORKERS": "2",
        "REDACT_PIXEL_BLOCK_SIZE": "  ",
    }
    settings = settings_from_env(env)
    assert settings.anonymize_mode is AnonymizeMode.BLUR
    assert settings.blur_radius == 12.5
    assert settings.scale == 1.0
    assert settings.accepted_labels == ("person", "dog")
    assert settings.output_format == "jpeg"
    assert settings.max_workers == 2
    assert settings.pixel_block_size == 15


def test_settings_from_env_invalid_values():
    with pytest.raises(ConfigurationError, match="REDACT_PIXEL_BLOCK_SIZE"):
        settings_from_env({"REDACT_PIXEL_BLOCK_SIZE": "big"})
    with pytest.raises(ConfigurationError):
        settings_from_env({"REDACT_ANONYMIZE_MODE": "smudge"})
    with pytest.raises(ConfigurationError):
        settings_from_env({"REDACT_OUTPUT_QUALITY": "2"})


def test_settings_from_params_layers_on_base():
    base = replace(RedactionSettings(), pixel_block_size=8)
    settings = settings_from_params({"mode": "blur", "quality": "0.5"}, base=base)
    assert settings.anonymize_mode is AnonymizeMode.BLUR
    assert settings.output_quality == 0.5
    assert settings.pixel_block_size == 8


def test_settings_from_params_ignores_unknown_keys():
    settings = settings_from_params({"output": "json", "name": "a.jpg"})
    assert settings == RedactionSettings(max_workers=settings.max_workers)


def test_parse_labels():
    assert parse_labels("person,*face*") == ("person", "*face*")
    assert parse_labels(" , ") == ()
