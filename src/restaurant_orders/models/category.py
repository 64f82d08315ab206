from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from ..db.base import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(64), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)  # порядок вывода в меню

    menu_items = relationship("MenuItem", back_populates="category")
