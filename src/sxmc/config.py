"""
Fit configuration.

Provides Pydantic classes for the JSON fit configuration: experiment
parameters, observables, systematics, signals and sampler settings. Loading
resolves every named field to a column index once, so nothing downstream has
to match field names again.
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from pathlib import Path
from typing import Annotated, Any, Literal

import hist
import numpy as np
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    model_validator,
)

from sxmc.collections import NamedCollection, NamedModel
from sxmc.exceptions import ConfigurationError, custom_error_msg
from sxmc.layout import FieldLayout, resolve_fields

log = logging.getLogger(__name__)


class Experiment(BaseModel):
    """
    Experiment-wide parameters.

    Attributes:
        live_time: Live time in years; rates are given per year
        confidence: Confidence level for reported limits
        efficiency: Overall efficiency applied to every rate
    """

    model_config = ConfigDict()

    live_time: float = Field(..., gt=0)
    confidence: float = Field(default=0.9, gt=0, lt=1)
    efficiency: float = Field(default=1.0, gt=0)

    @property
    def exposure(self) -> float:
        """Scale factor turning a rate into an expected event count."""
        return self.live_time * self.efficiency


class Observable(NamedModel):
    """
    A quantity the fit bins on.

    Attributes:
        name: Identifier used by the ``fit`` block
        title: Display title
        field: Name of the sample field holding the quantity
        bins: Number of regular bins
        min: Lower bound (inclusive)
        max: Upper bound (exclusive)
    """

    model_config = ConfigDict(frozen=True)

    title: str = ""
    field: str
    bins: int = Field(..., repr=False)
    min: float = Field(..., repr=False)
    max: float = Field(..., repr=False)

    @model_validator(mode="after")
    def check_binning(self) -> Observable:
        """Validate that the range is non-empty and bins are positive."""
        if self.max <= self.min:
            msg = f"Observable '{self.name}': max ({self.max}) must be > min ({self.min})"
            raise ValueError(msg)
        if self.bins <= 0:
            msg = f"Observable '{self.name}' must have positive number of bins, got {self.bins}"
            raise ValueError(msg)
        return self

    @property
    def edges(self) -> list[float]:
        """Bin edges, generated with linspace."""
        return list(np.linspace(self.min, self.max, self.bins + 1))

    def to_hist(self) -> hist.axis.Regular:
        """
        Convert this observable to a hist axis.

        Returns:
            A hist.axis.Regular object with flow bins for out-of-range events
        """
        return hist.axis.Regular(
            self.bins, self.min, self.max, name=self.name, label=self.title or self.name
        )


class Observables(NamedCollection[Observable]):
    """All observables declared in the ``pdfs`` block."""

    root: list[Observable] = Field(default_factory=list)


class Systematic(NamedModel):
    """
    Base nuisance parameter deforming the samples before binning.

    Attributes:
        title: Display title
        type: Kind of transform
        observable_field: Field the transform acts on; must be an observable field
        mean: Prior mean and starting value
        sigma: Gaussian prior width, 0 for unconstrained
        fixed: Hold the parameter at its mean instead of sampling it
        jump: Proposal width; defaults to ``sigma`` or 0.01 when unconstrained
    """

    model_config = ConfigDict(frozen=True)

    title: str = ""
    type: str
    observable_field: str
    mean: float = 0.0
    sigma: float = Field(default=0.0, ge=0)
    fixed: bool = False
    jump: float | None = Field(default=None, ge=0)

    @property
    def proposal_width(self) -> float:
        """Width of the Gaussian jump proposed for this parameter."""
        if self.jump is not None:
            return self.jump
        return self.sigma if self.sigma > 0 else 0.01


class ShiftSystematic(Systematic):
    """Adds the parameter value to the observable field."""

    type: Literal["shift"] = "shift"


class ScaleSystematic(Systematic):
    """Multiplies the observable field by ``1 + value``."""

    type: Literal["scale"] = "scale"


class ResolutionScaleSystematic(Systematic):
    """Stretches the observable around its true value by ``1 + value``."""

    type: Literal["resolution_scale"] = "resolution_scale"
    truth_field: str

    @model_validator(mode="after")
    def check_truth_field(self) -> ResolutionScaleSystematic:
        """The truth field must be distinct from the smeared field."""
        if self.truth_field == self.observable_field:
            msg = (
                f"Systematic '{self.name}': truth_field and observable_field "
                f"must differ, both are '{self.truth_field}'"
            )
            raise ValueError(msg)
        return self


SystematicUnion = Annotated[
    ShiftSystematic | ScaleSystematic | ResolutionScaleSystematic,
    Field(discriminator="type"),
    custom_error_msg(
        {
            "union_tag_invalid": "Unknown systematic type '{tag}', expected one of {expected_tags}",
            "union_tag_not_found": "Systematic is missing its 'type'",
        }
    ),
]


class Systematics(NamedCollection[Systematic]):
    """All systematics declared in the ``pdfs`` block."""

    root: list[SystematicUnion] = Field(default_factory=list)  # type: ignore[assignment]


class PdfSettings(BaseModel):
    """
    Sample layout and PDF building blocks.

    Attributes:
        fields: Column names of the sample files, in file order
        observables: Available observables
        systematics: Available systematics
    """

    model_config = ConfigDict()

    fields: list[str] = Field(..., min_length=1)
    observables: Observables
    systematics: Systematics = Field(default_factory=lambda: Systematics([]))


class SignalSpec(NamedModel):
    """
    A mixture component as configured.

    Attributes:
        title: Display title
        rate: Expected events per unit live time
        sigma: Gaussian prior width on the rate (same units), 0 for none
        jump: Proposal width in events; defaults to ``sqrt(nexpected)``
        files: Sample files (``.npy`` or ``.npz``)
    """

    model_config = ConfigDict(frozen=True)

    title: str = ""
    rate: float = Field(..., ge=0)
    sigma: float = Field(default=0.0, ge=0)
    jump: float | None = Field(default=None, ge=0)
    files: list[str] = Field(default_factory=list)


class Signals(NamedCollection[SignalSpec]):
    """All signals declared at top level."""

    root: list[SignalSpec] = Field(default_factory=list)


class FitSettings(BaseModel):
    """
    Which pieces enter the fit, and how the sampler runs.

    Attributes:
        experiments: Number of fake experiments
        steps: MCMC steps per chain
        burnin_fraction: Fraction of the chain consumers discard
        signal_name: Signal of interest for downstream summaries
        output_file: Prefix for downstream output
        observables: Observable names, in binning order
        systematics: Systematic names, in parameter order
        signals: Signal names, in parameter order
        seed: Root seed for every random generator
        backend: Kernel back-end, ``cpu`` lanes or compiled ``tensor`` graph
        lanes: Number of CPU lanes for the ``cpu`` back-end
        mode: pytensor compilation mode for the ``tensor`` back-end
    """

    model_config = ConfigDict()

    experiments: int = Field(default=1, ge=1)
    steps: int = Field(..., gt=0)
    burnin_fraction: float = Field(default=0.1, ge=0, lt=1)
    signal_name: str | None = None
    output_file: str = "fit_spectrum"
    observables: list[str] = Field(..., min_length=1)
    systematics: list[str] = Field(default_factory=list)
    signals: list[str] = Field(..., min_length=1)
    seed: int = Field(default=0, ge=0)
    backend: Literal["cpu", "tensor"] = "cpu"
    lanes: int = Field(default=1, ge=1)
    mode: str = "FAST_RUN"


class FitConfig(BaseModel):
    """
    Complete, validated fit configuration.

    Attributes:
        experiment: Experiment-wide parameters
        pdfs: Fields, observables and systematics
        fit: Selection of observables/systematics/signals and sampler settings
        signals: Every configured signal, keyed by name
    """

    model_config = ConfigDict()

    experiment: Experiment
    pdfs: PdfSettings
    fit: FitSettings
    signals: Signals

    _layout: FieldLayout | None = PrivateAttr(default=None)

    @model_validator(mode="after")
    def check_references(self) -> FitConfig:
        """Every name used by the ``fit`` block must exist, and fields must resolve."""
        missing = [
            f"{kind} '{name}'"
            for kind, names, available in (
                ("observable", self.fit.observables, self.pdfs.observables),
                ("systematic", self.fit.systematics, self.pdfs.systematics),
                ("signal", self.fit.signals, self.signals),
            )
            for name in names
            if name not in available
        ]
        if missing:
            msg = f"fit block references unknown {', '.join(missing)}"
            raise ValueError(msg)
        if self.fit.signal_name is not None and self.fit.signal_name not in self.fit.signals:
            msg = f"signal_name '{self.fit.signal_name}' is not one of the fit signals"
            raise ValueError(msg)
        try:
            resolve_fields(self.pdfs.fields, self.observables, self.systematics)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return self

    @property
    def observables(self) -> list[Observable]:
        """Observables in the fit, in binning order."""
        return [self.pdfs.observables[name] for name in self.fit.observables]

    @property
    def systematics(self) -> list[Systematic]:
        """Systematics in the fit, in parameter order."""
        return [self.pdfs.systematics[name] for name in self.fit.systematics]

    @property
    def fit_signals(self) -> list[SignalSpec]:
        """Signals in the fit, in parameter order."""
        return [self.signals[name] for name in self.fit.signals]

    @property
    def layout(self) -> FieldLayout:
        """The resolved field layout shared by every signal."""
        if self._layout is None:
            self._layout = resolve_fields(
                self.pdfs.fields, self.observables, self.systematics
            )
        return self._layout

    def nexpected(self, signal: SignalSpec) -> float:
        """Expected event count for a signal over the experiment exposure."""
        return signal.rate * self.experiment.exposure

    def prior_sigma(self, signal: SignalSpec) -> float:
        """Gaussian prior width on a signal's event count."""
        return signal.sigma * self.experiment.exposure

    @classmethod
    def load(cls, path: str | os.PathLike[str], *, verbose: bool = False) -> FitConfig:
        """
        Load a fit configuration from a JSON file.

        Relative sample file paths are resolved against the directory holding
        the configuration file.

        Args:
            path: Path to the JSON configuration
            verbose: If True, list every validation error instead of the first 20

        Returns:
            FitConfig: The validated configuration

        Raises:
            ConfigurationError: If the file is not valid JSON or fails validation
        """
        path_obj = Path(path)
        try:
            with path_obj.open("r", encoding="utf-8") as f:
                spec_dict = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Cannot read fit configuration {path}: {exc}"
            raise ConfigurationError(msg) from exc

        for signal in (spec_dict.get("signals") or {}).values():
            if isinstance(signal, dict) and "files" in signal:
                signal["files"] = [
                    str(path_obj.parent / filename) for filename in signal["files"]
                ]

        try:
            config = cls(**spec_dict)
        except ValidationError as e:
            raise ConfigurationError(
                cls._format_validation_error(e, path, verbose)
            ) from None

        log.info("Loaded fit configuration from %s", path)
        return config

    @classmethod
    def _format_validation_error(
        cls,
        validation_error: ValidationError,
        path: str | os.PathLike[str],
        verbose: bool,
    ) -> str:
        """
        Format a ValidationError into a readable error summary.

        Args:
            validation_error: The ValidationError to format
            path: Path to the file that caused the error
            verbose: If True, show all errors. If False, show first 20 and summarize rest.

        Returns:
            Formatted error message string
        """
        errors = validation_error.errors()
        loc_errors: Counter[str] = Counter(
            ".".join(str(key) for key in error["loc"]) or "<root>" for error in errors
        )

        error_summary = (
            f"Fit configuration validation failed with {len(errors)} errors from {path}\n"
        )
        error_summary += "\nError breakdown by field:\n"
        for loc, count in loc_errors.most_common():
            error_summary += f"  {loc}: {count}\n"

        errors_to_show = errors if verbose else errors[:20]
        error_summary += (
            f"\nErrors for debugging ({'all' if verbose else 'first 20'}):\n"
        )
        for i, error in enumerate(errors_to_show):
            readable_loc = " -> ".join(str(part) for part in error.get("loc", ()))
            msg = error.get("msg", "Unknown error")
            error_summary += f"  {i + 1}. {readable_loc or '<root>'}: {msg}\n"

        if not verbose and len(errors) > 20:
            error_summary += f"  ... and {len(errors) - 20} more errors (use verbose=True to see all)\n"

        return error_summary

    def summary(self) -> str:
        """Human-readable description of the fit, one setting per line."""
        lines = [
            "Fit:",
            f"  Fake experiments: {self.fit.experiments}",
            f"  MCMC steps: {self.fit.steps}",
            f"  Burn-in fraction: {self.fit.burnin_fraction}",
            f"  Signal name: {self.fit.signal_name}",
            f"  Output plot: {self.fit.output_file}",
            f"  Backend: {self.fit.backend}",
            "Experiment:",
            f"  Live time: {self.experiment.live_time} y",
            f"  Confidence level: {self.experiment.confidence}",
            "Observables:",
        ]
        for observable in self.observables:
            lines += [
                f"  {observable.name}",
                f'    Title: "{observable.title}"',
                f"    Lower bound: {observable.min}",
                f"    Upper bound: {observable.max}",
                f"    Bins: {observable.bins}",
            ]
        lines.append("Signals:")
        for signal in self.fit_signals:
            sigma = self.prior_sigma(signal)
            lines += [
                f"  {signal.name}",
                f'    Title: "{signal.title}"',
                f"    Expectation: {self.nexpected(signal)}",
                f"    Constraint: {sigma if sigma != 0 else 'none'}",
            ]
        if self.systematics:
            lines.append("Systematics:")
        for systematic in self.systematics:
            lines += [
                f"  {systematic.name}",
                f'    Title: "{systematic.title}"',
                f"    Type: {systematic.type}",
                f"    Observable: {systematic.observable_field}",
            ]
            if isinstance(systematic, ResolutionScaleSystematic):
                lines.append(f"    Truth: {systematic.truth_field}")
            lines += [
                f"    Mean: {systematic.mean}",
                f"    Constraint: {systematic.sigma if systematic.sigma != 0 else 'none'}",
                f"    Fixed: {'yes' if systematic.fixed else 'no'}",
            ]
        return "\n".join(lines)


def load(path: str | os.PathLike[str], **kwargs: Any) -> FitConfig:
    """Shorthand for :meth:`FitConfig.load`."""
    return FitConfig.load(path, **kwargs)


__all__ = (
    "Experiment",
    "FitConfig",
    "FitSettings",
    "Observable",
    "Observables",
    "PdfSettings",
    "ResolutionScaleSystematic",
    "ScaleSystematic",
    "ShiftSystematic",
    "SignalSpec",
    "Signals",
    "Systematic",
    "Systematics",
    "load",
)
