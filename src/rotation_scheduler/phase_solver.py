"""
Rotation Phase Solver

Finds per-team phase offsets for a fixed rotation so that every shift in the
sequence is staffed on every day of the cycle. A uniform phase step is tried
first; otherwise a CP-SAT model picks the phases.
"""

from dataclasses import replace
from datetime import date
from typing import Any, List, Optional, Sequence
import logging

from ortools.sat.python import cp_model

from .data_manager import TemplateType, WorkScheduleTemplate, rotation_coverage

logger = logging.getLogger(__name__)


def _covers(pattern: Sequence[Optional[str]], phases: Sequence[int], min_teams_per_shift: int) -> bool:
    coverage = rotation_coverage(pattern, phases)
    return all(count >= min_teams_per_shift for count in coverage.values())


def find_phase_step(pattern: Sequence[Optional[str]], team_count: int,
                    min_teams_per_shift: int = 1) -> Optional[int]:
    """
    Smallest uniform phase step giving distinct, fully covering phases.

    Args:
        pattern: Personal rotation, one shift name or None per cycle day
        team_count: Number of teams sharing the rotation
        min_teams_per_shift: Teams required on each shift every day

    Returns:
        The step, or None if no uniform step works
    """
    cycle = len(pattern)
    if cycle == 0 or team_count <= 0 or team_count > cycle:
        return None

    for step in range(1, cycle):
        phases = [(index * step) % cycle for index in range(team_count)]
        if len(set(phases)) != team_count:
            continue
        if _covers(pattern, phases, min_teams_per_shift):
            return step
    return None


def _create_phase_model(pattern: Sequence[Optional[str]], team_count: int,
                        min_teams_per_shift: int) -> tuple:
    """
    Create CP-SAT model choosing which cycle positions are used as team phases

    Returns:
        Tuple of (model, variables_dict)
    """
    cycle = len(pattern)
    shifts = [name for name in dict.fromkeys(pattern) if name is not None]

    model = cp_model.CpModel()

    # Decision variables: y[p] = 1 if some team starts its rotation at phase p
    y = {phase: model.NewBoolVar(f"phase_{phase}") for phase in range(cycle)}

    # Constraint 1: one distinct phase per team
    model.Add(sum(y.values()) == team_count)

    # Constraint 2: rotating every phase by the same amount gives an equivalent
    # schedule, so the first team can be pinned to phase 0
    model.Add(y[0] == 1)

    # Constraint 3: every shift staffed on every cycle day
    counts = []
    for offset in range(cycle):
        for shift_name in shifts:
            staffed = [y[phase] for phase in range(cycle) if pattern[(offset + phase) % cycle] == shift_name]
            count = model.NewIntVar(0, team_count, f"count_{offset}_{shift_name}")
            model.Add(count == sum(staffed))
            model.Add(count >= min_teams_per_shift)
            counts.append(count)

    # Objective: spread between the busiest and the quietest slot
    busiest = model.NewIntVar(0, team_count, "busiest")
    quietest = model.NewIntVar(0, team_count, "quietest")
    model.AddMaxEquality(busiest, counts)
    model.AddMinEquality(quietest, counts)
    model.Minimize(busiest - quietest)

    variables = {
        'y': y,
        'cycle': cycle,
        'team_count': team_count,
    }
    return model, variables


def _solve_cp_sat_model(model: Any, time_limit_seconds: float) -> Optional[Any]:
    """Solve the CP-SAT model with time limit"""
    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = time_limit_seconds

    status = solver.Solve(model)

    if status in [cp_model.OPTIMAL, cp_model.FEASIBLE]:
        return solver
    else:
        logger.warning(f"CP-SAT solver failed with status: {solver.StatusName(status)}")
        return None


def solve_team_phases(pattern: Sequence[Optional[str]], team_count: int,
                      min_teams_per_shift: int = 1,
                      time_limit_seconds: float = 10.0) -> Optional[List[int]]:
    """
    Choose distinct team phases covering every shift using CP-SAT.

    Returns:
        Sorted phase list (first is 0), or None when infeasible
    """
    cycle = len(pattern)
    if cycle == 0 or team_count <= 0 or team_count > cycle:
        logger.warning(f"Cannot place {team_count} teams on a {cycle}-day rotation")
        return None
    if not any(name is not None for name in pattern):
        logger.warning("Rotation pattern has no work days")
        return None

    model, variables = _create_phase_model(pattern, team_count, min_teams_per_shift)
    logger.info(f"Created phase model for {team_count} teams over a {cycle}-day cycle")

    solver = _solve_cp_sat_model(model, time_limit_seconds)
    if solver is None:
        return None

    y = variables['y']
    return [phase for phase in range(cycle) if solver.Value(y[phase]) == 1]


def design_fixed_template(name: str, teams: Sequence[str], shift_sequence: Sequence[str],
                          work_days: int, rest_days: int, reference_date: date,
                          min_teams_per_shift: int = 1, description: str = "",
                          time_limit_seconds: float = 10.0) -> Optional[WorkScheduleTemplate]:
    """
    Build a continuous fixed rotation template for the given teams.

    Uses a uniform phase step when one exists and solver-chosen explicit phases
    otherwise.

    Returns:
        The template, or None when the teams cannot cover every shift
    """
    draft = WorkScheduleTemplate(
        name=name,
        template_type=TemplateType.FIXED,
        cycle_days=len(shift_sequence) * (work_days + rest_days),
        reference_date=reference_date,
        description=description,
        teams=tuple(teams),
        work_days=work_days,
        rest_days=rest_days,
        shift_sequence=tuple(shift_sequence),
    )
    pattern = draft.rotation_pattern()

    step = find_phase_step(pattern, len(teams), min_teams_per_shift)
    if step is not None:
        logger.info(f"Rotation '{name}' uses uniform phase step {step}")
        return replace(draft, phase_step=step)

    phases = solve_team_phases(pattern, len(teams), min_teams_per_shift, time_limit_seconds)
    if phases is None:
        logger.warning(f"No phase assignment covers every shift for rotation '{name}'")
        return None
    logger.info(f"Rotation '{name}' uses solver phases {phases}")
    return replace(draft, team_phases=tuple(phases))
