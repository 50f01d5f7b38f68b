import typing

import attrs

from pacer.errors import ValidationError
from pacer.stores import StoreSerializable
from pacer.timing import Time

__all__ = ["Config", "TimeStepConfig"]


_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


@attrs.frozen
class TimeStepConfig(StoreSerializable):
    """Adaptive sub-stepping parameters."""

    adaptive: bool = True
    """Whether report steps may be subdivided into smaller sub-steps."""
    initial_step_size: float = attrs.field(
        default=Time(days=1), validator=attrs.validators.gt(0)
    )
    """Initial sub-step size in seconds."""
    min_step_size: float = attrs.field(
        default=Time(days=1e-3), validator=attrs.validators.gt(0)
    )
    """
    Minimum allowable sub-step size in seconds.

    A sub-step that fails to converge at this size makes the whole report step fail.
    """
    max_step_size: float = attrs.field(
        default=Time(days=365), validator=attrs.validators.gt(0)
    )
    """Maximum allowable sub-step size in seconds."""
    growth_factor: float = attrs.field(default=2.0, validator=attrs.validators.ge(1))
    """Factor by which the suggested step size grows after a converged sub-step."""
    shrink_factor: float = attrs.field(
        default=0.33,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.lt(1)),
    )
    """Factor by which the suggested step size shrinks after a failed sub-step."""
    max_step_cuts: int = attrs.field(default=10, validator=attrs.validators.ge(1))
    """Maximum number of consecutive sub-step cuts allowed within a report step."""
    max_step_after_event: typing.Optional[float] = attrs.field(
        default=None,
        validator=attrs.validators.optional(attrs.validators.gt(0)),
    )
    """
    Optional cap (in seconds) on the first sub-step of a report step carrying a
    well event (new well, status change, production or injection update).
    """

    def __attrs_post_init__(self) -> None:
        if self.min_step_size > self.max_step_size:
            raise ValidationError(
                f"Minimum step size {self.min_step_size} exceeds maximum step size {self.max_step_size}"
            )
        if not self.min_step_size <= self.initial_step_size <= self.max_step_size:
            raise ValidationError(
                f"Initial step size {self.initial_step_size} must lie within "
                f"[{self.min_step_size}, {self.max_step_size}]"
            )


@attrs.frozen
class Config(StoreSerializable):
    """Simulation run configuration and parameters."""

    output: bool = True
    """Whether to write output snapshots."""
    output_interval: int = attrs.field(default=1, validator=attrs.validators.ge(1))
    """Write an output snapshot every n-th report step (the last step is always written)."""
    terminal_output: bool = True
    """
    Whether to log progress and telemetry.

    In a distributed run this is further restricted to the coordinating process.
    """
    timestep: TimeStepConfig = attrs.field(factory=TimeStepConfig)
    """Adaptive sub-stepping parameters."""
    use_tuning: bool = False
    """Whether step-size control parameters are taken from the schedule's tuning records."""
    nl_maxiter: int = attrs.field(
        default=30,
        validator=attrs.validators.and_(
            attrs.validators.ge(1), attrs.validators.le(500)
        ),
    )
    """Maximum number of nonlinear (Newton) iterations per sub-step."""
    nl_tolerance: float = attrs.field(
        default=1e-9,
        validator=attrs.validators.and_(
            attrs.validators.gt(0), attrs.validators.le(1e-2)
        ),
    )
    """Absolute residual tolerance for the nonlinear solver."""
    restart: bool = False
    """Whether the run resumes from previously persisted state."""

    @classmethod
    def from_parameters(cls, parameters: typing.Mapping[str, typing.Any]) -> "Config":
        """
        Build a `Config` from a flat parameter mapping, as given on a command line.

        Keys of `TimeStepConfig` are prefixed with ``timestep.``, e.g.
        ``{"timestep.adaptive": "false", "use_TUNING": "true", "nl_maxiter": "20"}``.
        String values are coerced to the field types.

        :param parameters: Mapping of parameter names to values.
        :return: A new `Config`.
        :raises ValidationError: On unknown parameters or values that cannot be coerced.
        """
        top_fields = {field.name: field for field in attrs.fields(cls)}
        step_fields = {field.name: field for field in attrs.fields(TimeStepConfig)}
        top_kwargs: typing.Dict[str, typing.Any] = {}
        step_kwargs: typing.Dict[str, typing.Any] = {}
        for key, value in parameters.items():
            name = _PARAMETER_ALIASES.get(key, key)
            if name.startswith("timestep."):
                field_name = name[len("timestep.") :]
                if field_name not in step_fields:
                    raise ValidationError(f"Unknown parameter {key!r}")
                step_kwargs[field_name] = _coerce(
                    key, value, step_fields[field_name].type
                )
            elif name in top_fields and name != "timestep":
                top_kwargs[name] = _coerce(key, value, top_fields[name].type)
            else:
                raise ValidationError(f"Unknown parameter {key!r}")

        return cls(timestep=TimeStepConfig(**step_kwargs), **top_kwargs)


_PARAMETER_ALIASES = {
    "use_TUNING": "use_tuning",
    "output_terminal": "terminal_output",
}


def _coerce(key: str, value: typing.Any, typ: typing.Any) -> typing.Any:
    if typing.get_origin(typ) is typing.Union:
        if value is None or (isinstance(value, str) and value.lower() == "none"):
            return None
        typ = next(arg for arg in typing.get_args(typ) if arg is not type(None))
    if not isinstance(value, str):
        return value

    text = value.strip()
    if typ is bool:
        lowered = text.lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValidationError(f"Parameter {key!r} expects a boolean, got {value!r}")
    try:
        return typ(text)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Parameter {key!r} expects {typ.__name__}, got {value!r}"
        ) from exc
