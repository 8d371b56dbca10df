from typing import List

from fastapi import APIRouter, Depends, Response

from deploytrack.apis.dependencies import get_auth_context, get_rule_repository
from deploytrack.database.repositories import AutoDeployRuleRepository
from deploytrack.services.queries import AuthContext
from deploytrack.utilities.schemas import AutoDeployRuleRequest, AutoDeployRuleResponse

router = APIRouter(prefix="/api/auto-deploy", tags=["auto-deploy"])


@router.get("")
async def list_rules(
    ctx: AuthContext = Depends(get_auth_context),
    rules: AutoDeployRuleRepository = Depends(get_rule_repository)
) -> List[AutoDeployRuleResponse]:
    """Auto-deploy rules owned by the caller"""
    return [AutoDeployRuleResponse.from_model(r) for r in await rules.get_user_rules(ctx.user_id)]


@router.post("", status_code=201)
async def enable_rule(
    request: AutoDeployRuleRequest,
    ctx: AuthContext = Depends(get_auth_context),
    rules: AutoDeployRuleRepository = Depends(get_rule_repository)
) -> AutoDeployRuleResponse:
    """Deploy automatically whenever repository@branch receives a push"""
    rule = await rules.enable(
        user_id=ctx.user_id,
        repository=request.repository,
        branch=request.branch,
        server_id=request.server_id,
        is_admin=ctx.is_admin
    )
    return AutoDeployRuleResponse.from_model(rule)


@router.delete("", status_code=204)
async def disable_rule(
    repository: str,
    branch: str = "main",
    ctx: AuthContext = Depends(get_auth_context),
    rules: AutoDeployRuleRepository = Depends(get_rule_repository)
) -> Response:
    await rules.disable(ctx.user_id, repository, branch, is_admin=ctx.is_admin)
    return Response(status_code=204)
