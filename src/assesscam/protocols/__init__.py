"""Test-type catalog."""

from assesscam.protocols.catalog import (
	TestDescription,
	TestType,
	build_evaluator,
	build_steps,
	describe,
	hits_for,
	source_names,
)

__all__ = [
	"TestDescription",
	"TestType",
	"build_evaluator",
	"build_steps",
	"describe",
	"hits_for",
	"source_names",
]
