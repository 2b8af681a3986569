"""
Progress projection for polling clients
"""

from concept_tournament.models.tournament import TournamentStatus
from concept_tournament.schemas.tournament_schemas import ProgressInfo


def project_progress(
    ideas_count: int,
    current_round: int,
    status: str,
    lane_count: int,
    max_rounds: int,
) -> ProgressInfo:
    """
    Map persisted tournament state to a display stage and percentage.

    Steps are: seeding, one per round, finalizing. Seeds count as done once
    every lane has its round-0 idea; a round counts as done once current_round
    reaches it. Carries no authority over execution.
    """
    total_steps = max_rounds + 2
    seeded = lane_count > 0 and ideas_count >= lane_count
    steps_done = 1 + current_round if seeded else 0
    percent = int(100 * steps_done / total_steps)

    if status == TournamentStatus.CREATED:
        return ProgressInfo(percent=0, stage="queued", label="Waiting to start")
    if status == TournamentStatus.COMPLETED:
        return ProgressInfo(percent=100, stage="completed", label=f"Completed after round {current_round}")
    if status == TournamentStatus.FAILED:
        return ProgressInfo(percent=min(percent, 99), stage="failed", label=f"Failed at round {current_round}")
    if status == TournamentStatus.CANCELLED:
        return ProgressInfo(percent=min(percent, 99), stage="cancelled", label=f"Cancelled after round {current_round}")

    # running
    if not seeded:
        return ProgressInfo(percent=0, stage="seeding", label="Generating seed concepts")
    if current_round < max_rounds:
        next_round = current_round + 1
        return ProgressInfo(
            percent=min(percent, 99),
            stage=f"round_{next_round}",
            label=f"Round {next_round} of {max_rounds}"
        )
    return ProgressInfo(percent=99, stage="finalizing", label="Finalizing champions")
