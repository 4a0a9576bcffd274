from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from sqlalchemy.ext.asyncio import AsyncSession

from src import config
from src.auth import services
from src.database import get_db

router = APIRouter()


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


def _session_cookie_response(content: dict, token: str) -> JSONResponse:
    response = JSONResponse(content=content)
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=token,
        max_age=config.SESSION_TTL_SECONDS,
        httponly=True,
        samesite="lax",
        secure=config.is_production(),
    )
    return response


@router.post("/login")
async def login(form_data: OAuth2PasswordRequestForm = Depends(),
                db: AsyncSession = Depends(get_db)):
    """
        Аутентификация администратора.

        :param form_data: Данные формы авторизации
        :return: Токен сессии (также в cookie)
    """
    user = await services.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный логин или пароль"
        )

    access_token = services.create_access_token(user.username)
    content = {"access_token": access_token, "token_type": "bearer"}
    return _session_cookie_response(content, access_token)


@router.post("/logout")
async def logout():
    """Удаляет cookie сессии. Сам токен остается валидным до истечения срока."""
    response = JSONResponse(content={"message": "Вы успешно вышли из системы"})
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return response


@router.get("/info")
async def get_current_user_info(username: str = Depends(services.require_admin)):
    """
        Получение информации о текущем администраторе.

        :return: Информация о пользователе
    """
    return {"username": username}


@router.post("/change-password")
async def change_password(payload: ChangePasswordRequest,
                          username: str = Depends(services.require_admin),
                          db: AsyncSession = Depends(get_db)):
    """
        Смена пароля администратора.

        :param payload: Текущий и новый пароль (не короче 6 символов)
    """
    if not await services.authenticate_user(db, username, payload.current_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Текущий пароль неверен"
        )

    await services.change_admin_password(db, username, payload.new_password)
    return {"message": "Пароль изменен"}
