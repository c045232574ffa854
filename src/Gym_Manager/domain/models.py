"""
Gym_Manager.domain.models

Dataclasses representing the core domain objects of the Gym Manager app.
These are the types that repositories return and the data service hands out.

They are frozen: the UI reads them but every change goes through
GymDataService, which replaces the cached instance.
"""

from dataclasses import dataclass
from typing import Optional, Tuple


# ---------- Closed vocabularies ----------

GENDERS = ("male", "female")

FITNESS_GOALS = ("bulking", "cutting", "custom")

EXPENSE_CATEGORIES = ("rent", "equipment", "salary", "utilities", "maintenance", "other")

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_FROZEN = "frozen"

BODY_UNDERWEIGHT = "underweight"
BODY_NORMAL = "normal"
BODY_OVERWEIGHT = "overweight"
BODY_OBESE = "obese"


# ---------- Subscribers ----------

@dataclass(frozen=True)
class AttendanceRecord:
    date: str                               # 'YYYY-MM-DD'
    training_types: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Subscriber:
    id: int
    name: str
    gender: str                             # 'male' | 'female'
    subscription_date: str                  # 'YYYY-MM-DD'
    subscription_duration: int              # days
    expiry_date: str                        # subscription_date + duration
    residence: str = ""
    price: float = 0.0
    debt: float = 0.0
    age: Optional[int] = None
    height: Optional[float] = None          # cm
    weight: Optional[float] = None          # kg
    fitness_goal: Optional[str] = None      # 'bulking' | 'cutting' | 'custom'
    custom_goal: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    shower: bool = False
    frozen: bool = False                    # the only stored status override
    created_at: Optional[str] = None

    # Derived by the data service, never stored
    status: str = STATUS_ACTIVE
    bmi: Optional[float] = None
    body_type: Optional[str] = None
    attendance: Tuple[AttendanceRecord, ...] = ()


# ---------- Inventory ----------

@dataclass(frozen=True)
class Product:
    id: int
    name: str
    quantity: int = 0
    purchase_price: float = 0.0
    selling_price: float = 0.0
    description: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class Sale:
    id: int
    product_id: int                         # weak reference, may outlive the product
    product_name: str                       # snapshot at sale time
    quantity_sold: int
    purchase_price: float
    selling_price: float
    profit: float                           # (selling - purchase) * quantity_sold
    sale_date: str                          # ISO datetime
    created_at: Optional[str] = None


# ---------- Expenses & classes ----------

@dataclass(frozen=True)
class Expense:
    id: int
    name: str
    amount: float
    category: str                           # one of EXPENSE_CATEGORIES
    date: str                               # 'YYYY-MM-DD'
    description: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class IndividualClass:
    id: int
    name: str
    date: str                               # 'YYYY-MM-DD'
    price: float = 0.0
    age: Optional[int] = None
    created_at: Optional[str] = None
