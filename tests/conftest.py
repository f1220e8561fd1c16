import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from maternal_risk.errors import ProviderError5xx
from maternal_risk.schemas.internal_models import ModelProfile, ModelResponse
from maternal_risk.services.metrics_service import MetricsService


class FakeClock:
    """
    Deterministic clock. Sleeps are recorded and advance time instantly unless
    blocked. Timers only fire once time is advanced past their due point.
    """

    def __init__(self, start: float = 0.0):
        self.t = start
        self.sleeps: List[float] = []
        self.block_sleeps = False
        self._release = asyncio.Event()
        self._timers: List[Tuple[float, asyncio.Future]] = []

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds
        pending = []
        for due, fut in self._timers:
            if fut.done():
                continue
            if due <= self.t + 1e-9:
                fut.set_result(None)
            else:
                pending.append((due, fut))
        self._timers = pending

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.block_sleeps:
            await self._release.wait()
        self.advance(seconds)
        await asyncio.sleep(0)

    async def timer(self, seconds: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._timers.append((self.t + seconds, fut))
        await fut


async def settle(condition, rounds: int = 200) -> None:
    """Yields to the event loop until ``condition()`` holds."""
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class ScriptedProvider:
    """
    Provider double. Each model gets a script of outcomes consumed in order:
    an exception instance is raised, the string "hang" blocks until released,
    anything else is returned. The last entry repeats once the script runs out.
    """

    def __init__(self, scripts: Optional[Dict[str, List[Any]]] = None, default: Any = None):
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.default = default if default is not None else ProviderError5xx("unscripted model")
        self.calls: List[Dict[str, Any]] = []
        self.release = asyncio.Event()
        self.finished = 0

    async def invoke(self, profile: ModelProfile, prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        self.calls.append({"model": profile.name, "max_tokens": max_tokens, "temperature": temperature, "prompt": prompt})
        script = self.scripts.get(profile.name)
        if script:
            outcome = script.pop(0) if len(script) > 1 else script[0]
        else:
            outcome = self.default

        if isinstance(outcome, str) and outcome == "hang":
            await self.release.wait()
            self.finished += 1
            return ModelResponse(text="late")
        self.finished += 1
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, dict):
            return ModelResponse(structured=outcome)
        return ModelResponse(text=str(outcome))

    def calls_for(self, model: str) -> int:
        return len([c for c in self.calls if c["model"] == model])


def model_report(level: str = "High", score: float = 45) -> Dict[str, Any]:
    return {
        "riskAssessment": {"overallRisk": {"score": score, "level": level}},
        "recommendations": {
            "immediate": ["Check blood pressure today"],
            "shortTerm": ["Weekly antenatal visits"],
            "longTerm": ["Plan delivery at a facility with obstetric care"]
        },
        "warningSystem": {"redFlags": ["Vaginal bleeding"], "yellowFlags": ["Mild swelling"]},
        "followUpSchedule": ["Review in 7 days"],
        "metadata": {"language": "en"}
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_model_health():
    MetricsService.reset_health()
    yield
    MetricsService.reset_health()


@pytest.fixture
def example_patient():
    return {"vitals": {"bloodPressure": "150/95", "bmi": 17}, "location": "rural"}


@pytest.fixture
def healthy_patient():
    return {
        "age": 28,
        "vitals": {"bloodPressure": "118/76", "heartRate": 82, "bmi": 22.0, "temperature": 36.8, "hemoglobin": 12.4},
        "symptoms": {"headache": "mild"},
        "location": "urban",
        "accessToHealthcare": "good",
        "pregnancyWeek": 20
    }


@pytest.fixture
def critical_patient():
    return {
        "age": 16,
        "vitals": {"bloodPressure": "165/110", "bmi": 17.2, "temperature": 38.6, "hemoglobin": 9.1},
        "symptoms": {"headache": "severe", "blurredVision": True},
        "location": "rural",
        "pregnancyWeek": 34
    }
