import pytest

from anamnesis.context import (
    canonicalize_input,
    create_layer_context,
    update_layer_context,
    validate_layer_context,
)
from anamnesis.schemas import Demographics, Triage


def test_canonicalize_strips_control_characters():
    assert canonicalize_input(None) == ""
    assert canonicalize_input("  hi\x07 ") == "hi"
    assert canonicalize_input(b"chest\x00pain") == "chest pain"
    assert canonicalize_input(123) == "123"
    assert canonicalize_input("line one\nline two") == "line one\nline two"


def test_create_context_accepts_demographics_dict():
    ctx = create_layer_context("headache", {"age": 42, "sex": "female"})
    assert isinstance(ctx.demographics, Demographics)
    assert ctx.demographics.age == 42
    assert ctx.triage is None
    assert ctx.symptoms == []


def test_update_rejects_unknown_fields():
    ctx = create_layer_context("headache")
    with pytest.raises(ValueError):
        update_layer_context(ctx, not_a_field=True)


def test_metadata_patch_merges():
    ctx = create_layer_context("headache")
    update_layer_context(ctx, metadata={"body_system": "neurological"})
    update_layer_context(ctx, metadata={"stage_timings": {"parseIntent": 3}})

    assert ctx.metadata.body_system == "neurological"
    assert ctx.metadata.stage_timings == {"parseIntent": 3}


def test_triage_patch_never_lowers_level():
    ctx = create_layer_context("crushing chest pain")
    update_layer_context(
        ctx,
        triage=Triage(level="EMERGENCY", is_high_risk=True, safety_flags=["CRITICAL_SYMPTOMS"], emergency_protocol=True),
    )
    update_layer_context(ctx, triage=Triage(level="NON_URGENT", reasons=["Looks fine."]))

    assert ctx.triage.level == "EMERGENCY"
    assert ctx.triage.is_high_risk is True
    assert ctx.triage.emergency_protocol is True
    assert "CRITICAL_SYMPTOMS" in ctx.triage.safety_flags
    assert ctx.triage.reasons[-1] == "EMERGENCY level retained from an earlier assessment."


def test_triage_patch_can_raise_level():
    ctx = create_layer_context("headache")
    update_layer_context(ctx, triage=Triage(level="NON_URGENT"))
    update_layer_context(ctx, triage={"level": "URGENT", "is_high_risk": True})
    assert ctx.triage.level == "URGENT"


def test_validation_is_progressive():
    empty = validate_layer_context(create_layer_context("   "))
    assert [issue.code for issue in empty] == ["empty"]

    ctx = create_layer_context("hi")
    assert validate_layer_context(ctx) == []
    strict = validate_layer_context(ctx, strict=True)
    assert [issue.path for issue in strict] == ["triage.level"]
