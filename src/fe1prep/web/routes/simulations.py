"""Exam simulation endpoints."""

from fastapi import APIRouter, Depends, Query, status

from fe1prep.core import simulation
from fe1prep.core.essay_grader import EssayGrader
from fe1prep.web.dependencies import get_essay_grader, get_user_id
from fe1prep.web.schemas import (
    FailSimulationRequest,
    SimulationListResponse,
    SimulationQuestionResponse,
    SimulationResultResponse,
    SimulationStartResponse,
    SimulationSummaryResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
)

router = APIRouter(prefix="/api/simulations", tags=["simulations"])


@router.post("", response_model=SimulationStartResponse, status_code=status.HTTP_201_CREATED)
async def start_simulation(user_id: str = Depends(get_user_id)) -> SimulationStartResponse:
    """Start a new 5-question simulation."""
    started = simulation.start_simulation(user_id)
    return SimulationStartResponse(**started.to_dict())


@router.get("", response_model=SimulationListResponse)
async def list_simulations(user_id: str = Depends(get_user_id)) -> SimulationListResponse:
    """Simulation history, newest first."""
    summaries = [
        SimulationSummaryResponse(**s.to_dict())
        for s in simulation.list_simulations(user_id)
    ]
    return SimulationListResponse(simulations=summaries, count=len(summaries))


@router.get("/{simulation_id}", response_model=SimulationResultResponse)
async def get_simulation(
    simulation_id: str,
    user_id: str = Depends(get_user_id),
) -> SimulationResultResponse:
    """Review a simulation and its answers."""
    result = simulation.get_simulation_result(user_id, simulation_id)
    return SimulationResultResponse(**result.to_dict())


@router.get(
    "/{simulation_id}/questions/{question_id}",
    response_model=SimulationQuestionResponse,
)
async def get_simulation_question(
    simulation_id: str,
    question_id: str,
    index: int = Query(..., ge=0),
    user_id: str = Depends(get_user_id),
) -> SimulationQuestionResponse:
    """Show one question of a simulation."""
    view = simulation.get_simulation_question(user_id, simulation_id, question_id, index)
    return SimulationQuestionResponse(**view.to_dict())


@router.post("/{simulation_id}/answers", response_model=SubmitAnswerResponse)
async def submit_answer(
    simulation_id: str,
    body: SubmitAnswerRequest,
    user_id: str = Depends(get_user_id),
) -> SubmitAnswerResponse:
    """Store the answer to one question."""
    result = simulation.submit_answer(
        user_id,
        simulation_id,
        question_id=body.question_id,
        answer_text=body.answer_text,
        timer_id=body.timer_id,
        current_question_index=body.current_question_index,
    )
    return SubmitAnswerResponse(**result.to_dict())


@router.post("/{simulation_id}/finish", response_model=SimulationResultResponse)
async def finish_simulation(
    simulation_id: str,
    user_id: str = Depends(get_user_id),
    grader: EssayGrader = Depends(get_essay_grader),
) -> SimulationResultResponse:
    """Grade every answer and complete the simulation."""
    result = await simulation.finish_simulation(user_id, simulation_id, grader=grader)
    return SimulationResultResponse(**result.to_dict())


@router.post("/{simulation_id}/fail", response_model=SimulationResultResponse)
async def fail_simulation(
    simulation_id: str,
    body: FailSimulationRequest | None = None,
    user_id: str = Depends(get_user_id),
) -> SimulationResultResponse:
    """Mark a simulation as failed (abandoned or out of time)."""
    reason = body.reason if body else None
    result = simulation.fail_simulation(user_id, simulation_id, reason=reason)
    return SimulationResultResponse(**result.to_dict())
