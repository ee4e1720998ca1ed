# app/services/ingredient_seed.py
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ingredient import Ingredient

# 預設字典（常見食材 + 常見腸胃敏感來源）
DEFAULT_INGREDIENTS: List[str] = [
    "tomatoes", "tomato sauce", "onions", "garlic", "garlic powder", "basil",
    "bell peppers", "black pepper", "salt", "olive oil", "vegetable oil",
    "coconut oil", "butter", "milk", "cheese", "cheddar cheese", "cream",
    "yogurt", "eggs", "wheat", "bread", "pasta", "rice", "oats", "corn",
    "potatoes", "beans", "lentils", "chickpeas", "soy sauce", "tofu",
    "chicken", "ground beef", "ground turkey", "pork", "salmon", "tuna",
    "shrimp", "broccoli", "cauliflower", "cabbage", "spinach", "lettuce",
    "carrots", "mushrooms", "avocado", "apples", "bananas", "strawberries",
    "oranges", "lemon", "peanuts", "almonds", "walnuts", "chocolate",
    "coffee", "tea", "sugar", "honey", "chili peppers", "ginger", "cinnamon",
]


async def seed_ingredients(db: AsyncSession, names: Iterable[str]) -> int:
    """
    插入尚未存在的食材（以 normalized_name 判斷），回傳新增筆數。
    呼叫端負責 commit。
    """
    wanted = {}
    for n in names:
        name = (n or "").strip()
        if name:
            wanted.setdefault(name.lower(), name)
    if not wanted:
        return 0

    result = await db.execute(
        select(Ingredient.normalized_name).where(Ingredient.normalized_name.in_(list(wanted)))
    )
    existing = set(result.scalars().all())

    added = 0
    for key, name in wanted.items():
        if key in existing:
            continue
        db.add(Ingredient(name=name, normalized_name=key))
        added += 1
    await db.flush()
    return added
