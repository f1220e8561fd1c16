from maternal_risk.engines.prompt_builder import PromptBuilder
from maternal_risk.engines.rule_engine import coerce_input, score
from maternal_risk.schemas.internal_models import UseCase


def test_prompt_contains_profile_and_deterministic_score(example_patient):
    patient = coerce_input(example_patient)
    prompt = PromptBuilder().build(patient, score(patient), UseCase.RISK_PREDICTION)

    assert "USE CASE: risk_prediction" in prompt
    assert "- Blood Pressure: 150/95" in prompt
    assert "- Risk score: 45 / 100" in prompt
    assert "High blood pressure (+20)" in prompt
    assert '"overallRisk"' in prompt
    assert "{PATIENT_PROFILE}" not in prompt


def test_missing_template_uses_builtin_prompt(tmp_path, healthy_patient):
    patient = coerce_input(healthy_patient)
    builder = PromptBuilder(template_path=str(tmp_path / "missing.txt"))
    prompt = builder.build(patient, score(patient))

    assert "risk level Low" in prompt
    assert "None identified" in prompt


def test_age_is_rendered_without_trailing_decimal(healthy_patient):
    patient = coerce_input(dict(healthy_patient, age=17.5))
    prompt = PromptBuilder().build(patient, score(patient))
    assert "- Age: 17.5 years" in prompt

    patient = coerce_input(healthy_patient)
    assert "- Age: 28 years" in PromptBuilder().build(patient, score(patient))
