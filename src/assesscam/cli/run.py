"""Replay a recorded detection scenario through the full assessment pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence, TextIO

from assesscam.cli._helpers import add_common_args, configure_logging, load_cli_config
from assesscam.config.loader import Config
from assesscam.demo.replay import ReplayClock, Scenario, ScenarioError, build_sources, iter_frames, load_scenario
from assesscam.engine.orchestrator import TestOrchestrator
from assesscam.engine.types import Step
from assesscam.feedback.status import ConsoleStatusReporter
from assesscam.protocols.catalog import TestType, build_evaluator, build_steps, describe, parse_test_type, source_names
from assesscam.results.aggregator import ResultSummary
from assesscam.results.store import ResultLogger
from assesscam.sources.base import DetectionSource
from assesscam.sources.dispatcher import FrameDispatcher
from assesscam.sources.interval import AdaptiveIntervalCalculator
from assesscam.sources.mock import MockDetectionSource

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT_ERROR = 2
EXIT_SOURCES_UNAVAILABLE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assesscam-run",
        description="Replay a detection scenario through the guided assessment engine.",
    )
    add_common_args(parser)
    parser.add_argument(
        "--scenario",
        help="Path to a JSON scenario of timestamped per-source detections",
    )
    parser.add_argument(
        "--test",
        dest="test_type",
        help="Test type to run (default: the scenario's test_type)",
    )
    parser.add_argument(
        "--out",
        help="Directory to append the result summary to as daily JSONL files",
    )
    parser.add_argument(
        "--no-status",
        action="store_true",
        help="Do not render the step status grid",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List the available test types and exit",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    if args.list:
        _print_catalog(sys.stdout)
        return EXIT_OK
    if not args.scenario:
        parser.error("--scenario is required unless --list is given")

    config = load_cli_config(args.config)
    LOGGER.info("Config loaded (version=%s)", config.config_version)
    try:
        scenario = load_scenario(args.scenario)
        test_type = parse_test_type(args.test_type or scenario.test_type or "")
    except (ScenarioError, ValueError) as exc:
        LOGGER.error("%s", exc)
        return EXIT_INPUT_ERROR

    app = ReplayApp(config, scenario, test_type, show_status=not args.no_status)
    summary = app.run()
    if summary is None:
        return EXIT_SOURCES_UNAVAILABLE
    sys.stdout.write(json.dumps(summary.to_dict(), indent=2) + "\n")
    if args.out:
        target = ResultLogger(args.out).write(summary, run_id=Path(args.scenario).stem)
        LOGGER.info("Result appended to %s", target)
    return EXIT_OK


class ReplayApp:
    """Wires sources, dispatcher, evaluator and orchestrator for one scenario."""

    def __init__(
        self,
        config: Config,
        scenario: Scenario,
        test_type: TestType,
        *,
        show_status: bool = True,
        output: Optional[TextIO] = None,
    ) -> None:
        self._scenario = scenario
        self._test_type = test_type
        self._clock = ReplayClock()
        steps = build_steps(test_type, config)
        self._dispatcher = FrameDispatcher(
            self._build_sources(steps),
            interval_ms=config.dispatcher.initial_interval_ms,
            calculator=AdaptiveIntervalCalculator(
                max_samples=config.dispatcher.latency_samples,
                multiplier=config.dispatcher.latency_multiplier,
                min_interval_ms=config.dispatcher.min_interval_ms,
                max_interval_ms=config.dispatcher.max_interval_ms,
                change_threshold=config.dispatcher.change_threshold,
            ),
            adaptive=config.dispatcher.adaptive,
        )
        self.orchestrator = TestOrchestrator(
            steps,
            build_evaluator(test_type, config),
            self._dispatcher,
            now_fn=self._clock,
            test_type=test_type.value,
        )
        if show_status:
            self.orchestrator.subscribe(
                ConsoleStatusReporter(steps, output=output or sys.stdout, now_fn=self._clock)
            )

    @property
    def dispatcher(self) -> FrameDispatcher:
        return self._dispatcher

    def run(self) -> Optional[ResultSummary]:
        """Replay every frame; returns None when no detection source could start."""

        orchestrator = self.orchestrator
        try:
            report = orchestrator.initialize()
            for name, error in report.failed.items():
                LOGGER.warning("Continuing without source '%s': %s", name, error)
            first = self._scenario.frames[0].timestamp if self._scenario.frames else 0.0
            try:
                orchestrator.start_test(now=first)
            except RuntimeError as exc:
                LOGGER.error("Cannot start test: %s", exc)
                return None

            LOGGER.info(
                "Replaying %d frames (%s)",
                len(self._scenario.frames),
                describe(self._test_type).display_name,
            )
            for frame in iter_frames(self._scenario, self._clock):
                if not orchestrator.is_running:
                    break
                orchestrator.process_frame(frame, now=self._clock.now)
            if orchestrator.is_running:
                LOGGER.info("Scenario ended before the test completed; stopping")
                orchestrator.stop_test(now=self._clock.now)
            return orchestrator.get_results(now=self._clock.now)
        finally:
            orchestrator.dispose()

    def _build_sources(self, steps: Sequence[Step]) -> Dict[str, DetectionSource]:
        names = source_names(steps)
        if self._test_type is TestType.MOCK:
            return {name: MockDetectionSource(name=name) for name in names}
        return dict(build_sources(self._scenario, names, self._clock))


def _print_catalog(output: TextIO) -> None:
    for test_type in TestType:
        description = describe(test_type)
        output.write(f"{test_type.value:<12} {description.display_name}: {description.description}\n")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
