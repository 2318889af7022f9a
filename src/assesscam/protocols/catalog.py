"""Test-type catalog: each test type is an ordered Step list plus evaluator strategies.

Hit quotas for presence steps are derived from how long the target should be
held in view, at the step's frame interval (``hits_for``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from assesscam.config.loader import Config, ConfigError, StepOverride
from assesscam.engine.types import EvaluatorKind, Step
from assesscam.evaluators.base import EvaluatorSuite, StepEvaluator
from assesscam.evaluators.pose import CHAIR_STAND_LANDMARKS, LandmarkPresenceEvaluator, RepetitionEvaluator
from assesscam.evaluators.presence import (
    AnyDetectionEvaluator,
    CompositePresenceEvaluator,
    ConstantEvaluator,
    LabelThresholdEvaluator,
    PresenceRule,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 500.0
CHAIR_STAND_REPETITIONS = 3

OBJECTS_SOURCE = "objects"
FACE_SOURCE = "face"
POSE_SOURCE = "pose"


class TestType(str, Enum):
    __test__ = False

    OBJECTS = "objects"
    AVMED = "avmed"
    CHAIR_STAND = "chair_stand"
    BALANCE = "balance"
    GAIT = "gait"
    MOCK = "mock"


@dataclass(frozen=True)
class TestDescription:
    __test__ = False

    test_type: TestType
    display_name: str
    description: str


AVMED_RULES: Dict[str, PresenceRule] = {
    "pill": PresenceRule.build(all_of=[["pill"]]),
    "pill on tongue": PresenceRule.build(all_of=[["pill"], ["mouth", "tongue"]]),
    "drink water": PresenceRule.build(all_of=[["water", "cup"], ["mouth"]]),
    "no pill on tongue": PresenceRule.build(all_of=[["mouth", "tongue"]], none_of=[["pill"]]),
    "no pill under tongue": PresenceRule.build(all_of=[["mouth", "tongue"]], none_of=[["pill"]]),
}

_DESCRIPTIONS = {
    TestType.OBJECTS: ("Object Detection", "Show common objects to the camera one at a time."),
    TestType.AVMED: (
        "Medication Adherence",
        "Video-observed medication intake: hold, place, swallow, and show an empty mouth.",
    ),
    TestType.CHAIR_STAND: (
        "SPPB Chair Stand",
        "Repeated sit-to-stand cycles counted from pose landmarks and scored on the SPPB scale.",
    ),
    TestType.BALANCE: ("SPPB Balance", "Hold side-by-side, semi-tandem, and tandem stands."),
    TestType.GAIT: ("SPPB Gait Speed", "Walk the marked path at a normal pace, then fast."),
    TestType.MOCK: ("Mock Test", "Development test driven by canned detections."),
}


def hits_for(seconds: float, interval_ms: float = DEFAULT_INTERVAL_MS) -> int:
    """Number of confirming ticks equivalent to holding a condition for ``seconds``."""

    if interval_ms <= 0:
        raise ValueError("interval_ms must be > 0")
    return max(1, int(round(seconds * 1000.0 / interval_ms)))


def parse_test_type(value: "str | TestType") -> TestType:
    if isinstance(value, TestType):
        return value
    try:
        return TestType(str(value).strip().lower())
    except ValueError as exc:
        known = ", ".join(item.value for item in TestType)
        raise ValueError(f"Unknown test type '{value}' (expected one of: {known})") from exc


def _object_steps(interval_ms: float) -> List[Step]:
    def presence(label: str, target: str, seconds: float) -> Step:
        return Step(
            label=label,
            target_condition=target,
            evaluator=EvaluatorKind.LABEL,
            sources=(OBJECTS_SOURCE,),
            instruction_text=f"Show a {target} in frame",
            max_duration_seconds=10.0,
            confidence_threshold=0.5,
            required_hit_count=hits_for(seconds, interval_ms),
            frame_interval_ms=interval_ms,
        )

    return [
        presence("Detect Person", "person", 2.0),
        presence("Detect Bottle", "bottle", 1.0),
        presence("Detect Cup", "cup", 1.0),
        presence("Detect Cell Phone", "cell phone", 1.0),
        presence("Detect Laptop", "laptop", 1.0),
    ]


def _avmed_steps(interval_ms: float) -> List[Step]:
    def stage(label: str, target: str, media: str, seconds: float, max_s: float, threshold: float) -> Step:
        return Step(
            label=label,
            target_condition=target,
            evaluator=EvaluatorKind.COMPOSITE,
            sources=(OBJECTS_SOURCE, FACE_SOURCE),
            instruction_ref=f"assets/instructions/{media}.mp4",
            max_duration_seconds=max_s,
            confidence_threshold=threshold,
            required_hit_count=hits_for(seconds, interval_ms),
            frame_interval_ms=interval_ms,
        )

    return [
        stage("Hold the pill", "pill", "holding-pill", 2.0, 10.0, 0.7),
        stage("Place pill on tongue", "pill on tongue", "pill-on-tongue", 2.0, 15.0, 0.7),
        stage("Show no pill on tongue", "no pill on tongue", "no-pill-on-tongue", 2.0, 10.0, 0.7),
        stage("Drink water", "drink water", "drink-water", 3.0, 15.0, 0.65),
        stage("Show no pill under tongue", "no pill under tongue", "no-pill-under-tongue", 2.0, 10.0, 0.7),
    ]


def _chair_stand_steps(interval_ms: float) -> List[Step]:
    return [
        Step(
            label="Setup Validation",
            target_condition="any",
            evaluator=EvaluatorKind.ANY_DETECTION,
            sources=(OBJECTS_SOURCE,),
            instruction_text="Point your camera at any item to test object detection.",
            required_hit_count=hits_for(1.0, interval_ms),
            frame_interval_ms=interval_ms,
        ),
        Step(
            label="Chair Detection",
            target_condition="chair",
            evaluator=EvaluatorKind.LABEL,
            sources=(OBJECTS_SOURCE,),
            instruction_text="Point your camera at a chair to test chair detection.",
            required_hit_count=hits_for(1.0, interval_ms),
            frame_interval_ms=interval_ms,
        ),
        Step(
            label="Person Detection",
            target_condition="person",
            evaluator=EvaluatorKind.LANDMARKS,
            sources=(POSE_SOURCE,),
            instruction_text="Point your camera at yourself to test pose detection.",
            required_hit_count=hits_for(1.0, interval_ms),
            frame_interval_ms=interval_ms,
        ),
        Step(
            label="Chair Stand Test",
            target_condition="chair_stand",
            evaluator=EvaluatorKind.REPETITION,
            sources=(POSE_SOURCE,),
            instruction_text=(
                "Slowly sit and stand in front of the camera, keeping as much of your body visible as possible."
            ),
            max_duration_seconds=120.0,
            required_hit_count=CHAIR_STAND_REPETITIONS,
            frame_interval_ms=interval_ms,
        ),
        Step(
            label="Results Analysis",
            target_condition="results",
            evaluator=EvaluatorKind.CONSTANT,
            sources=(POSE_SOURCE,),
            instruction_text="Please wait as the results are analyzed.",
            required_hit_count=5,
            frame_interval_ms=interval_ms,
        ),
    ]


def _pose_presence(
    label: str,
    instruction: str,
    seconds: float,
    max_s: float,
    threshold: float,
    interval_ms: float,
) -> Step:
    return Step(
        label=label,
        target_condition="person",
        evaluator=EvaluatorKind.LABEL,
        sources=(POSE_SOURCE,),
        instruction_text=instruction,
        max_duration_seconds=max_s,
        confidence_threshold=threshold,
        required_hit_count=hits_for(seconds, interval_ms),
        frame_interval_ms=interval_ms,
    )


_BALANCE_STANDS = (
    ("Side-by-side Stand", "Stand with your feet side by side."),
    ("Semi-tandem Stand", "Place the side of one heel against the big toe of the other foot."),
    ("Tandem Stand", "Place the heel of one foot directly in front of the other foot."),
)

# (label, instruction, target seconds, max seconds, confidence threshold)
_GAIT_STAGES = (
    ("Setup Walking Path", "Stand at the start of the walking path, fully in view.", 5.0, 10.0, 0.8),
    ("Normal Pace Walk", "Walk to the end of the path at your usual pace.", 15.0, 30.0, 0.7),
    ("Fast Pace Walk", "Walk to the end of the path as fast as is safe.", 10.0, 20.0, 0.7),
)


def _balance_steps(interval_ms: float) -> List[Step]:
    return [
        _pose_presence(label, instruction, 10.0, 15.0, 0.8, interval_ms)
        for label, instruction in _BALANCE_STANDS
    ]


def _gait_steps(interval_ms: float) -> List[Step]:
    return [
        _pose_presence(label, instruction, seconds, max_s, threshold, interval_ms)
        for label, instruction, seconds, max_s, threshold in _GAIT_STAGES
    ]


def _mock_steps(interval_ms: float) -> List[Step]:
    return [
        Step(
            label="Mock Step",
            target_condition="pill",
            evaluator=EvaluatorKind.LABEL,
            sources=(OBJECTS_SOURCE,),
            instruction_ref="assets/instructions/holding-pill.mp4",
            max_duration_seconds=5.0,
            confidence_threshold=0.65,
            required_hit_count=hits_for(1.0, interval_ms),
            frame_interval_ms=interval_ms,
        )
    ]


_BUILDERS: Dict[TestType, Callable[[float], List[Step]]] = {
    TestType.OBJECTS: _object_steps,
    TestType.AVMED: _avmed_steps,
    TestType.CHAIR_STAND: _chair_stand_steps,
    TestType.BALANCE: _balance_steps,
    TestType.GAIT: _gait_steps,
    TestType.MOCK: _mock_steps,
}


def build_steps(test_type: "str | TestType", config: Optional[Config] = None) -> List[Step]:
    """Ordered step list for a test type, with any per-step overrides from config applied."""

    kind = parse_test_type(test_type)
    interval_ms = config.dispatcher.initial_interval_ms if config is not None else DEFAULT_INTERVAL_MS
    steps = _BUILDERS[kind](interval_ms)
    if config is not None:
        steps = apply_overrides(steps, config.overrides_for(kind.value))
    return steps


def apply_overrides(steps: Sequence[Step], overrides: Mapping[str, StepOverride]) -> List[Step]:
    labels = {step.label for step in steps}
    unknown = sorted(set(overrides) - labels)
    if unknown:
        raise ConfigError(f"Overrides reference unknown steps: {', '.join(unknown)}")

    result: List[Step] = []
    for step in steps:
        override = overrides.get(step.label)
        if override is None:
            result.append(step)
            continue
        changes: Dict[str, object] = {}
        if override.required_hit_count is not None:
            changes["required_hit_count"] = override.required_hit_count
        if override.untimed:
            changes["max_duration_seconds"] = None
        elif override.max_duration_seconds is not None:
            changes["max_duration_seconds"] = override.max_duration_seconds
        if override.confidence_threshold is not None:
            changes["confidence_threshold"] = override.confidence_threshold
        if override.frame_interval_ms is not None:
            changes["frame_interval_ms"] = override.frame_interval_ms
        LOGGER.debug("Overriding step '%s': %s", step.label, changes)
        result.append(replace(step, **changes))
    return result


def build_evaluator(test_type: "str | TestType", config: Optional[Config] = None) -> EvaluatorSuite:
    """Evaluator suite with a strategy for every evaluator kind the test's steps use."""

    kind = parse_test_type(test_type)
    debounce_ms = config.analysis.debounce_ms if config is not None else 500.0
    factories: Dict[EvaluatorKind, Callable[[], StepEvaluator]] = {
        EvaluatorKind.ANY_DETECTION: AnyDetectionEvaluator,
        EvaluatorKind.LABEL: LabelThresholdEvaluator,
        EvaluatorKind.COMPOSITE: lambda: CompositePresenceEvaluator(AVMED_RULES),
        EvaluatorKind.LANDMARKS: lambda: LandmarkPresenceEvaluator(CHAIR_STAND_LANDMARKS),
        EvaluatorKind.REPETITION: lambda: RepetitionEvaluator(debounce_ms=debounce_ms),
        EvaluatorKind.CONSTANT: ConstantEvaluator,
    }
    used = {step.evaluator for step in _BUILDERS[kind](DEFAULT_INTERVAL_MS)}
    return EvaluatorSuite({evaluator: factories[evaluator]() for evaluator in used})


def source_names(steps: Sequence[Step]) -> Tuple[str, ...]:
    """Distinct source names in first-use order."""

    names: List[str] = []
    for step in steps:
        for name in step.sources:
            if name not in names:
                names.append(name)
    return tuple(names)


def describe(test_type: "str | TestType") -> TestDescription:
    kind = parse_test_type(test_type)
    display_name, description = _DESCRIPTIONS[kind]
    return TestDescription(test_type=kind, display_name=display_name, description=description)


__all__ = [
    "AVMED_RULES",
    "DEFAULT_INTERVAL_MS",
    "TestDescription",
    "TestType",
    "apply_overrides",
    "build_evaluator",
    "build_steps",
    "describe",
    "hits_for",
    "parse_test_type",
    "source_names",
]
