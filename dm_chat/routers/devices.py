from fastapi import APIRouter, Depends

from dm_chat.schemas.chat import RegisterPushTokenRequest, SuccessResponse, UnregisterPushTokenRequest
from dm_chat.services.push_service import PushDispatcher
from dm_chat.utils.dependencies import get_current_user, get_push_dispatcher
from dm_chat.utils.security import Identity


router = APIRouter(prefix="/chats/push-token", tags=["push"])


@router.post("", response_model=SuccessResponse)
async def register_push_token(
    payload: RegisterPushTokenRequest,
    current_user: Identity = Depends(get_current_user),
    push: PushDispatcher = Depends(get_push_dispatcher),
):
    await push.register_device_token(current_user.user_id, payload.fcm_token, payload.platform, payload.device_id)
    return SuccessResponse()


@router.delete("", response_model=SuccessResponse)
async def unregister_push_token(
    payload: UnregisterPushTokenRequest,
    current_user: Identity = Depends(get_current_user),
    push: PushDispatcher = Depends(get_push_dispatcher),
):
    await push.unregister_device_token(current_user.user_id, payload.fcm_token)
    return SuccessResponse()
