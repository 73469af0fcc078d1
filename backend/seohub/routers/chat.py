"""AI chat: one-shot answers, SSE streaming, conversations and context cache."""

import json
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import iterate_in_threadpool
from starlette.concurrency import run_in_threadpool

from seohub.crud import crud
from seohub.database import db_session
from seohub.database import get_db
from seohub.dependencies.auth import get_current_user
from seohub.dependencies.auth import is_super_admin
from seohub.schemas.schemas import ChatIn
from seohub.schemas.schemas import ChatStreamIn
from seohub.schemas.schemas import ConversationCreate
from seohub.schemas.schemas import ConversationDetailOut
from seohub.schemas.schemas import MessageOut
from seohub.schemas.schemas import serialize
from seohub.services import ai_service
from seohub.services import task_context
from seohub.services.ai_service import AIServiceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"], dependencies=[Depends(get_current_user)])

STREAM_SYSTEM_PROMPT = (
    "You are Rylie, an AI SEO assistant. You help automotive dealerships with their SEO needs. "
    "Be helpful, professional, and focus on actionable SEO advice. Keep responses concise but informative."
)
STREAM_HISTORY_LIMIT = 20


def _frame(event_type: str, data) -> dict:
    return {"data": json.dumps({"type": event_type, "data": data}, default=str)}


def _conversation_title(message: str) -> str:
    return message[:50] + ("..." if len(message) > 50 else "")


# ---------------------------------------------------------------------------
# One-shot chat
# ---------------------------------------------------------------------------


@router.post("/chat")
def chat(body: ChatIn, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    system_prompt = ai_service.BASIC_SYSTEM_PROMPT
    if body.use_context and current_user.agency_id is not None:
        context = task_context.get_cached_task_context(db, current_user.agency_id)
        system_prompt = task_context.build_enhanced_system_prompt(context)

    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": body.message},
    ]
    try:
        result = ai_service.generate_response(messages, body.model or "openai/gpt-4o")
    except AIServiceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return {"content": result["content"], "model": result["model"], "usage": result["usage"]}


@router.get("/chat")
def chat_context(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    if current_user.agency_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No agency context")

    context = task_context.get_task_context(db, current_user.agency_id)
    return {
        "completedTasks": context["completedTasks"][:10],
        "activeTaskTypes": context["activeTaskTypes"],
        "packageInfo": context["packageInfo"],
        "recentKeywords": context["recentKeywords"][:15],
        "dealershipInfo": context["dealershipInfo"],
    }


# ---------------------------------------------------------------------------
# Streaming chat
# ---------------------------------------------------------------------------


def _store_reply(conversation_id: int, user_id: int, content: str, model: str) -> Optional[dict]:
    """Persist the streamed assistant reply; ``None`` if the conversation is gone."""

    tokens = ai_service.estimate_tokens(content)
    with db_session() as session:
        conversation = crud.get_conversation(session, conversation_id, user_id=user_id)
        if conversation is None:
            return None
        assistant = crud.create_message(
            session,
            conversation=conversation,
            role="assistant",
            content=content,
            model=model,
            tokens=tokens,
            cost=ai_service.calculate_cost(tokens, model),
        )
        return {"id": assistant.id, "tokens": tokens, "model": model}


@router.post("/chat/stream")
def chat_stream(body: ChatStreamIn, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    model = body.model or "openai/gpt-4-turbo-preview"
    user_id = current_user.id

    if body.conversation_id is not None:
        conversation = crud.get_conversation(db, body.conversation_id, user_id=user_id)
        if conversation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
        history = crud.get_recent_messages(db, conversation.id, limit=STREAM_HISTORY_LIMIT)
    else:
        conversation = crud.create_conversation(
            db,
            user_id=user_id,
            agency_id=current_user.agency_id,
            title=_conversation_title(body.message),
            model=model,
        )
        history = []

    chat_messages = [{"role": "system", "content": STREAM_SYSTEM_PROMPT}]
    chat_messages += [{"role": m.role.lower(), "content": m.content} for m in history]
    chat_messages.append({"role": "user", "content": body.message})

    user_message = crud.create_message(db, conversation=conversation, role="user", content=body.message)
    conversation_id = conversation.id
    conversation_info = {"id": conversation.id, "title": conversation.title}
    user_message_info = {
        "id": user_message.id,
        "content": user_message.content,
        "createdAt": user_message.created_at.isoformat() if user_message.created_at else None,
    }

    async def _events():
        yield _frame("conversation", conversation_info)
        yield _frame("userMessage", user_message_info)

        parts = []
        try:
            async for delta in iterate_in_threadpool(ai_service.stream_response(chat_messages, model)):
                parts.append(delta)
                yield _frame("chunk", {"content": delta})
        except AIServiceError as exc:
            logger.error("Chat stream for conversation %s failed: %s", conversation_id, exc)
            yield _frame("error", {"message": "Failed to generate response"})
            yield {"data": "[DONE]"}
            return

        stored = await run_in_threadpool(_store_reply, conversation_id, user_id, "".join(parts), model)
        if stored is None:
            logger.warning("Conversation %s was deleted mid-stream; reply not saved", conversation_id)
            yield _frame("error", {"message": "Conversation no longer exists"})
        else:
            yield _frame("complete", stored)
        yield {"data": "[DONE]"}

    return EventSourceResponse(_events())


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


@router.get("/conversations")
def list_conversations(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    rows = []
    for conversation in crud.get_conversations(db, current_user.id):
        last = max(conversation.messages, key=lambda m: m.id, default=None)
        preview = None
        if last is not None:
            preview = last.content[:100] + ("..." if len(last.content) > 100 else "")
        rows.append(
            {
                "id": conversation.id,
                "title": conversation.title,
                "model": conversation.model,
                "messageCount": len(conversation.messages),
                "lastMessage": preview,
                "lastMessageAt": last.created_at.isoformat() if last and last.created_at else None,
                "createdAt": conversation.created_at.isoformat() if conversation.created_at else None,
                "updatedAt": conversation.updated_at.isoformat() if conversation.updated_at else None,
            }
        )
    return {"success": True, "conversations": rows}


@router.post("/conversations")
def create_conversation(
    body: Optional[ConversationCreate] = None,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    body = body or ConversationCreate()
    conversation = crud.create_conversation(
        db,
        user_id=current_user.id,
        agency_id=current_user.agency_id,
        title=body.title or "New Conversation",
        model=body.model,
    )
    return {
        "conversation": {
            "id": conversation.id,
            "title": conversation.title,
            "model": conversation.model,
            "createdAt": conversation.created_at.isoformat() if conversation.created_at else None,
        }
    }


@router.get("/conversations/{conversation_id}")
def read_conversation(conversation_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    conversation = crud.get_conversation(db, conversation_id, user_id=current_user.id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    data = serialize(ConversationDetailOut, conversation)
    data["messages"] = [serialize(MessageOut, m) for m in sorted(conversation.messages, key=lambda m: m.id)]
    return {"success": True, "conversation": data}


@router.delete("/conversations/{conversation_id}")
def delete_conversation(conversation_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    conversation = crud.get_conversation(db, conversation_id, user_id=current_user.id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    crud.delete_conversation(db, conversation)
    return {"success": True, "message": "Conversation deleted"}


# ---------------------------------------------------------------------------
# Models & context cache
# ---------------------------------------------------------------------------


@router.get("/models")
def list_models():
    return {"success": True, "models": [model.to_dict() for model in ai_service.AVAILABLE_MODELS]}


@router.get("/ai/cache")
def cache_stats():
    return task_context.cache_stats()


@router.delete("/ai/cache")
def clear_cache(clear_all: bool = Query(False, alias="all"), current_user=Depends(get_current_user)):
    if clear_all and is_super_admin(current_user):
        task_context.clear_all()
        return {"message": "All cache cleared"}
    if current_user.agency_id is not None:
        task_context.invalidate(current_user.agency_id)
        return {"message": "Agency cache cleared"}
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No agency context")
