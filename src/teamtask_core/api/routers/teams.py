"""Teams API endpoints: team lifecycle and membership management."""
import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ... import crud, mailer, models, schemas
from ...activity import ActivityRecorder
from ...config import Settings
from ...database import get_db
from ...errors import BadRequestError, NotFoundError
from ...mailer import EmailSender
from ...models import ActivityAction, ActivityEntity, TeamRole
from ...permissions import (
    can_change_member_role,
    can_delete_team,
    can_manage_team,
    can_view_team,
    check_permission,
    is_member,
    is_owner,
    is_protected_member,
)
from ...realtime import RealtimeEvent, RealtimeHub
from ..dependencies import (
    get_activity_recorder,
    get_app_settings,
    get_current_user,
    get_email_sender,
    get_realtime_hub,
    load_team,
)
from ..responses import team_list_item, team_response, user_payload

logger = logging.getLogger("teamtask-core.teams")

router = APIRouter(tags=["teams"])


def _team_ref(team: models.Team) -> dict:
    return {"id": str(team.id), "name": team.name}


def _member_payload(user: models.User, role: TeamRole) -> dict:
    return {**user_payload(user), "role": TeamRole(role).value}


@router.post("/", response_model=schemas.TeamResponse, status_code=201)
def create_team(
    payload: schemas.TeamCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
):
    """
    Create a new team. The creator becomes its owner and only member.

    - **name**: Team name
    - **description**: Optional description
    """
    team = crud.create_team(db, current_user.id, payload.name, payload.description)

    background_tasks.add_task(
        recorder.record,
        current_user.id, team.id, ActivityAction.CREATED, ActivityEntity.TEAM, team.id,
        {"name": team.name},
    )
    logger.info(f"Created team '{team.name}' (ID: {team.id})")
    return team_response(db, team)


@router.get("/", response_model=schemas.TeamListResponse)
def list_my_teams(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """List teams the current user owns or belongs to, with their role in each."""
    teams = crud.get_user_teams(db, current_user.id)
    items = [team_list_item(db, team, current_user.id) for team in teams]
    return schemas.TeamListResponse(items=items, total=len(items))


@router.get("/{team_id}", response_model=schemas.TeamResponse)
def get_team(
    team_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get a team with its members."""
    team, snapshot = load_team(db, team_id)
    check_permission(can_view_team(snapshot, current_user.id), "You are not a member of this team")
    return team_response(db, team)


@router.put("/{team_id}", response_model=schemas.TeamResponse)
def update_team(
    team_id: UUID,
    payload: schemas.TeamUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Update team details. Admins and the owner only.

    - **name**: New name (optional)
    - **description**: New description (optional, null clears it)
    """
    team, snapshot = load_team(db, team_id)
    check_permission(
        can_manage_team(snapshot, current_user.id),
        "Only team admins or owners can update team details",
    )

    changes = crud.update_team(db, team, payload.model_dump(exclude_unset=True))
    response = team_response(db, team)

    if changes:
        background_tasks.add_task(
            recorder.record,
            current_user.id, team.id, ActivityAction.UPDATED, ActivityEntity.TEAM, team.id,
            {"changes": changes},
        )
        background_tasks.add_task(
            hub.publish,
            RealtimeEvent.TEAM_UPDATED,
            {
                "team": response.model_dump(mode="json"),
                "team_id": str(team.id),
                "changes": changes,
                "updated_by": user_payload(current_user),
            },
        )
        logger.info(f"Updated team {team.id}: {', '.join(changes)}")
    return response


@router.delete("/{team_id}", response_model=schemas.MessageResponse)
def delete_team(
    team_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Delete a team, its memberships and its activity history. Owner only.

    Projects and tasks of the team are not deleted.
    """
    team, snapshot = load_team(db, team_id)
    check_permission(can_delete_team(snapshot, current_user.id), "Only team owner can delete the team")

    team_ref = _team_ref(team)
    crud.delete_team(db, team)

    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.TEAM_DELETED,
        {"team": team_ref, "team_id": team_ref["id"], "deleted_by": user_payload(current_user)},
    )
    logger.info(f"Deleted team {team_id}")
    return schemas.MessageResponse(message="Team deleted successfully")


# Membership endpoints

@router.post("/{team_id}/members", response_model=schemas.TeamResponse, status_code=201)
def invite_member(
    team_id: UUID,
    payload: schemas.InviteMemberRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """
    Add an existing user to the team. Admins and the owner only.

    - **email**: Email of the user to add
    - **role**: admin or member (default: member)
    """
    team, snapshot = load_team(db, team_id)
    check_permission(
        can_manage_team(snapshot, current_user.id),
        "Only team admins or owners can invite members",
    )

    invitee = crud.get_user_by_email(db, payload.email)
    if not invitee:
        raise NotFoundError("User not found with this email")

    crud.add_team_member(db, team.id, invitee.id, payload.role)
    response = team_response(db, team)

    background_tasks.add_task(
        recorder.record,
        current_user.id, team.id, ActivityAction.MEMBER_ADDED, ActivityEntity.USER, invitee.id,
        {"email": invitee.email, "name": invitee.name, "role": payload.role.value},
    )
    background_tasks.add_task(
        hub.publish_with_personal,
        RealtimeEvent.MEMBER_JOINED,
        {
            "member": _member_payload(invitee, payload.role),
            "team": _team_ref(team),
            "team_id": str(team.id),
            "added_by": user_payload(current_user),
        },
        invitee.id,
        f"You have been added to {team.name}",
    )
    subject, body = mailer.team_invite_email(invitee.name, team.name, current_user.name, settings.app_base_url)
    background_tasks.add_task(mailer.send_email, email_sender, invitee.email, subject, body)

    logger.info(f"Added user {invitee.id} to team {team.id} as {payload.role.value}")
    return response


@router.delete("/{team_id}/members/{user_id}", response_model=schemas.TeamResponse)
def remove_member(
    team_id: UUID,
    user_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """Remove a member from the team. Admins and the owner only; the owner cannot be removed."""
    team, snapshot = load_team(db, team_id)
    check_permission(
        can_manage_team(snapshot, current_user.id),
        "Only team admins or owners can remove members",
    )
    if is_protected_member(snapshot, user_id):
        raise BadRequestError("Cannot remove team owner")

    removed_user = crud.get_user(db, user_id)
    if not crud.remove_team_member(db, team.id, user_id):
        raise NotFoundError("Member not found in this team")
    response = team_response(db, team)

    background_tasks.add_task(
        recorder.record,
        current_user.id, team.id, ActivityAction.MEMBER_REMOVED, ActivityEntity.USER, user_id,
        {"email": removed_user.email, "name": removed_user.name} if removed_user else {},
    )
    if removed_user:
        background_tasks.add_task(
            hub.publish_with_personal,
            RealtimeEvent.MEMBER_REMOVED,
            {
                "member": user_payload(removed_user),
                "team": _team_ref(team),
                "team_id": str(team.id),
                "removed_by": user_payload(current_user),
            },
            user_id,
            f"You have been removed from {team.name}",
        )

    logger.info(f"Removed user {user_id} from team {team.id}")
    return response


@router.put("/{team_id}/members/{user_id}/role", response_model=schemas.TeamResponse)
def update_member_role(
    team_id: UUID,
    user_id: UUID,
    payload: schemas.MemberRoleUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Change a member's role. Owner only; the owner's own role cannot change.

    - **role**: admin or member
    """
    team, snapshot = load_team(db, team_id)
    check_permission(
        can_change_member_role(snapshot, current_user.id),
        "Only team owner can update member roles",
    )
    if is_protected_member(snapshot, user_id):
        raise BadRequestError("Cannot update team owner role")

    old_role = crud.update_team_member_role(db, team.id, user_id, payload.role)
    if old_role is None:
        raise NotFoundError("Member not found in this team")

    member_user = crud.get_user(db, user_id)
    response = team_response(db, team)

    if old_role != payload.role:
        background_tasks.add_task(
            recorder.record,
            current_user.id, team.id, ActivityAction.ROLE_CHANGED, ActivityEntity.USER, user_id,
            {"old_role": old_role.value, "new_role": payload.role.value},
        )
        background_tasks.add_task(
            hub.publish_with_personal,
            RealtimeEvent.MEMBER_ROLE_UPDATED,
            {
                "member": _member_payload(member_user, payload.role),
                "team": _team_ref(team),
                "team_id": str(team.id),
                "old_role": old_role.value,
                "new_role": payload.role.value,
                "changed_by": user_payload(current_user),
            },
            user_id,
            f"Your role in {team.name} has been changed from {old_role.value} to {payload.role.value}",
        )
        logger.info(f"Changed role of user {user_id} in team {team.id}: {old_role.value} → {payload.role.value}")
    return response


@router.post("/{team_id}/leave", response_model=schemas.MessageResponse)
def leave_team(
    team_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """Leave a team. The owner cannot leave; they must delete the team instead."""
    team, snapshot = load_team(db, team_id)
    if is_owner(snapshot, current_user.id):
        raise BadRequestError("Team owner cannot leave. Please transfer ownership or delete the team.")
    if not is_member(snapshot, current_user.id):
        raise BadRequestError("You are not a member of this team")

    crud.remove_team_member(db, team.id, current_user.id)

    background_tasks.add_task(
        recorder.record,
        current_user.id, team.id, ActivityAction.MEMBER_REMOVED, ActivityEntity.USER, current_user.id,
        {"email": current_user.email, "name": current_user.name, "left": True},
    )
    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.MEMBER_LEFT,
        {"member": user_payload(current_user), "team": _team_ref(team), "team_id": str(team.id)},
    )
    logger.info(f"User {current_user.id} left team {team.id}")
    return schemas.MessageResponse(message="Left team successfully")
