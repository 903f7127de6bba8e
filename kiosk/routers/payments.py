from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kiosk.core.config import DEFAULT_CURRENCY
from kiosk.core.database import get_db
from kiosk.deps import require_restaurant
from kiosk.models.payment_intent import PaymentIntent
from kiosk.models.restaurant import Restaurant
from kiosk.services.payments import create_payment_intent, get_payment_intent, update_payment_status

router = APIRouter(prefix="/api", tags=["payments"])


class PaymentIntentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = None


class PaymentIntentUpdateStatus(BaseModel):
    status: str
    pos_response: Optional[str] = None


class PaymentIntentRead(BaseModel):
    id: str
    restaurant_id: int
    amount: str
    currency: str
    status: str
    pos_response: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


def _intent_to_dict(intent: PaymentIntent) -> dict:
    return {
        "id": intent.id,
        "restaurant_id": intent.restaurant_id,
        "amount": str(intent.amount),
        "currency": intent.currency,
        "status": intent.status,
        "pos_response": intent.pos_response,
        "created_at": intent.created_at,
        "updated_at": intent.updated_at,
    }


def _ensure_intent(db: Session, intent_id: str) -> PaymentIntent:
    intent = get_payment_intent(db, intent_id)
    if not intent:
        raise HTTPException(status_code=404, detail="Pagamento não encontrado")
    return intent


@router.post("/kiosk/{restaurant_id}/payment-intents", response_model=PaymentIntentRead)
def create_intent(
    payload: PaymentIntentCreate,
    restaurant: Restaurant = Depends(require_restaurant),
    db: Session = Depends(get_db),
):
    try:
        intent = create_payment_intent(
            db,
            restaurant_id=restaurant.id,
            amount=payload.amount,
            currency=payload.currency or restaurant.currency or DEFAULT_CURRENCY,
        )
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao criar pagamento") from exc

    db.refresh(intent)
    return _intent_to_dict(intent)


@router.get("/payment-intents/{intent_id}", response_model=PaymentIntentRead)
def read_intent(intent_id: str, db: Session = Depends(get_db)):
    return _intent_to_dict(_ensure_intent(db, intent_id))


@router.post("/payment-intents/{intent_id}/status", response_model=PaymentIntentRead)
def update_intent_status(
    intent_id: str,
    payload: PaymentIntentUpdateStatus,
    db: Session = Depends(get_db),
):
    intent = _ensure_intent(db, intent_id)
    try:
        update_payment_status(db, intent, payload.status, payload.pos_response)
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao atualizar pagamento") from exc

    db.refresh(intent)
    return _intent_to_dict(intent)
