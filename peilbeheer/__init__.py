"""Polder water-level simulation and pump scheduling."""

from .drooglegging import calculate_drooglegging, find_max_level, find_minimum_flow
from .errors import ConfigInvalid, ExportError, InputShape, PeilbeheerError, ScenarioError
from .flows import apply_outflow_caps, resolve_link_flow
from .network import NetworkResult, NetworkSimulation, run_network_simulation
from .optimizer import OptimisationParams, OptimisationResult, optimize_pump_schedule
from .pid import PIDController
from .polder import SimulationParams, simulate_polder
from .prices import PriceVector
from .records import LinkFlow, StepRecord
from .scenario import Scenario, ScenarioBuilder, constant_rain_scenario
from .strategies import (
    BalancedStrategy,
    CallableStrategy,
    ConstantStrategy,
    ControlStrategy,
    NaiveStrategy,
    PIDStrategy,
    ScheduleStrategy,
    strategy_from_spec,
)
from .topology import PolderConfig, PumpLink, Topology, ValveLink, WeirLink
from .units import rain_to_flow
from .waterbalance import calculate_water_balance

__all__ = [
    "BalancedStrategy",
    "CallableStrategy",
    "ConfigInvalid",
    "ConstantStrategy",
    "ControlStrategy",
    "ExportError",
    "InputShape",
    "LinkFlow",
    "NaiveStrategy",
    "NetworkResult",
    "NetworkSimulation",
    "OptimisationParams",
    "OptimisationResult",
    "PIDController",
    "PIDStrategy",
    "PeilbeheerError",
    "PolderConfig",
    "PriceVector",
    "PumpLink",
    "Scenario",
    "ScenarioBuilder",
    "ScenarioError",
    "ScheduleStrategy",
    "SimulationParams",
    "StepRecord",
    "Topology",
    "ValveLink",
    "WeirLink",
    "apply_outflow_caps",
    "calculate_drooglegging",
    "calculate_water_balance",
    "constant_rain_scenario",
    "find_max_level",
    "find_minimum_flow",
    "optimize_pump_schedule",
    "rain_to_flow",
    "resolve_link_flow",
    "run_network_simulation",
    "simulate_polder",
    "strategy_from_spec",
]
