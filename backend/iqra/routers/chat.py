from typing import List, Literal
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from ..gemini_client import GeminiClient

router = APIRouter(prefix="/chat", tags=["chat"])

TUTOR_INSTRUCTION = "You are a helpful educational AI tutor for students."

class ChatTurn(BaseModel):
	role: Literal["user", "model"]
	text: str

class ChatRequest(BaseModel):
	message: str
	history: List[ChatTurn] = []

@router.post("")
async def chat(req: ChatRequest):
	history = [{"role": t.role, "parts": [{"text": t.text}]} for t in req.history]
	try:
		client = GeminiClient()
		try:
			text = await client.generate(req.message, system_instruction=TUTOR_INSTRUCTION, history=history)
		finally:
			await client.aclose()
		return {"text": text}
	except Exception as e:
		raise HTTPException(status_code=500, detail=str(e))
