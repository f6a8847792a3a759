"""
TISS Glosa Model
Full or partial denials recorded while processing insurer returns
"""
import enum
from sqlalchemy import Column, Integer, ForeignKey, String, Numeric, Text, Boolean, DateTime, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base


class GlosaType(str, enum.Enum):
    TOTAL = "TOTAL"
    PARTIAL = "PARTIAL"


class GlosaCategory(str, enum.Enum):
    """Reporting categories for denial reasons"""
    AUTHORIZATION = "AUTHORIZATION"
    ELIGIBILITY = "ELIGIBILITY"
    PRICING = "PRICING"
    DOCUMENTATION = "DOCUMENTATION"
    CODING = "CODING"
    TECHNICAL = "TECHNICAL"
    OTHER = "OTHER"


class TISSGlosa(Base):
    """TISS Glosa - Glosa de guia"""
    __tablename__ = "tiss_glosas"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    guide_id = Column(Integer, ForeignKey("tiss_guides.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("tiss_batches.id", ondelete="CASCADE"), nullable=False)
    return_id = Column(Integer, ForeignKey("tiss_returns.id", ondelete="CASCADE"), nullable=False, index=True)

    glosa_type = Column(String(10), nullable=False)
    glosa_code = Column(String(20), nullable=False)
    glosa_description = Column(Text, nullable=True)
    category = Column(String(20), nullable=False, default=GlosaCategory.OTHER.value)

    glosa_value = Column(Numeric(12, 2), nullable=False)
    original_value = Column(Numeric(12, 2), nullable=False)
    approved_value = Column(Numeric(12, 2), nullable=False)

    can_appeal = Column(Boolean, nullable=False, default=True)
    appeal_status = Column(String(20), nullable=True)  # Only set once an appeal is filed

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    guide = relationship("TISSGuide", back_populates="glosas")
    tiss_return = relationship("TISSReturn", back_populates="glosas")

    __table_args__ = (
        Index('ix_tiss_glosas_clinic_category', 'clinic_id', 'category'),
    )

    def __repr__(self):
        return f"<TISSGlosa(id={self.id}, guide_id={self.guide_id}, type='{self.glosa_type}', value={self.glosa_value})>"
