import logging
import typing
from datetime import datetime

import numpy as np
from scipy.sparse import diags

import pacer

logging.basicConfig(level=logging.INFO, format="%(message)s")


class PressureDiffusion:
    """
    1D pressure diffusion with a pressure-dependent diffusivity, discretized
    with implicit Euler. A producer at the last cell holds a fixed drawdown
    once it is opened.
    """

    def __init__(
        self,
        cell_count: int = 50,
        cell_size: float = 10.0,
        diffusivity: float = 1e-2,
        sensitivity: float = 5e-4,
        producer_pressure: float = 1500.0,
    ) -> None:
        self.cell_count = cell_count
        self.cell_size = cell_size
        self.diffusivity = diffusivity
        self.sensitivity = sensitivity
        self.producer_pressure = producer_pressure
        self.producer_open = False

    def _transmissibility(self, pressure: np.ndarray) -> np.ndarray:
        face_pressure = 0.5 * (pressure[1:] + pressure[:-1])
        return (
            self.diffusivity
            * (1.0 + self.sensitivity * (face_pressure - 2000.0))
            / self.cell_size**2
        )

    def residual(
        self, state: np.ndarray, previous_state: np.ndarray, step_size: float
    ) -> np.ndarray:
        transmissibility = self._transmissibility(state)
        flux = transmissibility * (state[1:] - state[:-1])
        accumulation = state - previous_state
        divergence = np.zeros_like(state)
        divergence[:-1] += flux
        divergence[1:] -= flux
        residual = accumulation - step_size * divergence
        if self.producer_open:
            residual[-1] = state[-1] - self.producer_pressure
        return residual

    def jacobian(
        self, state: np.ndarray, previous_state: np.ndarray, step_size: float
    ) -> typing.Any:
        # Frozen-coefficient Jacobian
        transmissibility = self._transmissibility(state) * step_size
        main = np.ones_like(state)
        main[:-1] += transmissibility
        main[1:] += transmissibility
        upper = -transmissibility.copy()
        lower = -transmissibility.copy()
        if self.producer_open:
            main[-1] = 1.0
            lower[-1] = 0.0
        return diags([lower, main, upper], offsets=[-1, 0, 1], format="csr")

    def validate_well_constraints(self, state: np.ndarray, step_size: float) -> None:
        if not self.producer_open:
            logging.getLogger(__name__).info("Opening producer PROD-1")
        self.producer_open = True


def main():
    schedule = pacer.ReportingSchedule.from_dates(
        [
            datetime(2024, 1, 1),
            datetime(2024, 2, 1),
            datetime(2024, 3, 1),
            datetime(2024, 6, 1),
            datetime(2025, 1, 1),
        ],
        events={1: [pacer.ScheduleEvent.NEW_WELL]},
    )
    config = pacer.Config.from_parameters(
        {
            "timestep.initial_step_size": str(pacer.Time(days=5)),
            "timestep.max_step_size": str(pacer.Time(days=60)),
            "timestep.max_step_after_event": str(pacer.Time(days=1)),
            "nl_maxiter": "12",
            "nl_tolerance": "1e-6",
        }
    )
    model = PressureDiffusion()
    output = pacer.StoreOutputWriter.from_config(
        "./results/pressure.json", config, num_steps=schedule.num_steps
    )
    simulator = pacer.Simulator(
        config=config,
        schedule=schedule,
        solver_factory=pacer.newton_solver_factory(lambda wells, aquifers: model, config),
        initial_state=np.full(model.cell_count, 2000.0),
        output=output,
        title="PRESSURE DIFFUSION",
    )
    report = simulator.run()
    print(report.summary())
    print("Wasted effort:")
    print(simulator.failure_report.summary())


if __name__ == "__main__":
    main()
