from sqlalchemy import Boolean, Column, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint, func

from .database import Base


class MatchPair(Base):
    __tablename__ = "match_pair"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_a_id = Column(String, nullable=False)
    user_b_id = Column(String, nullable=False)
    action_a = Column(String, nullable=False, default="pending")
    acted_at_a = Column(DateTime(timezone=True), nullable=True)
    action_b = Column(String, nullable=False, default="pending")
    acted_at_b = Column(DateTime(timezone=True), nullable=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    is_boosted = Column(Boolean, nullable=False, default=False)
    boost_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_a_id", "user_b_id", name="uq_match_pair"),
        Index("idx_match_pair_user_b", "user_b_id"),
        Index("idx_match_pair_matched_at", "matched_at"),
    )


class DailyMatchBatch(Base):
    __tablename__ = "daily_match_batch"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)
    batch_date = Column(Date, nullable=False)
    entries_json = Column(Text, nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "batch_date", name="uq_daily_batch_user_date"),)


class QuotaCounter(Base):
    __tablename__ = "quota_counter"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)
    action_type = Column(String, nullable=False)
    quota_date = Column(Date, nullable=False)
    used = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("user_id", "action_type", "quota_date", name="uq_quota_counter_key"),)


class MatchEvent(Base):
    __tablename__ = "match_event"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False)
    user_id = Column(String, nullable=True, index=True)
    payload_json = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ChatThread(Base):
    __tablename__ = "chat_thread"

    id = Column(String, primary_key=True)
    participant_a_id = Column(String, nullable=False)
    participant_b_id = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (UniqueConstraint("participant_a_id", "participant_b_id", name="uq_chat_thread_pair"),)


class MatchProfile(Base):
    """Read model maintained by the profile service."""

    __tablename__ = "match_profile"

    user_id = Column(String, primary_key=True)
    age = Column(Integer, nullable=True)
    gender = Column(String, nullable=True)
    height_cm = Column(Integer, nullable=True)
    country = Column(String, nullable=True)
    state = Column(String, nullable=True)
    city = Column(String, nullable=True)
    religion = Column(String, nullable=True)
    caste = Column(String, nullable=True)
    mother_tongue = Column(String, nullable=True)
    education_level = Column(String, nullable=True)
    occupation = Column(String, nullable=True)
    annual_income = Column(Float, nullable=True)
    diet = Column(String, nullable=True)
    smoking = Column(String, nullable=True)
    drinking = Column(String, nullable=True)
    marital_status = Column(String, nullable=True)
    zodiac_sign = Column(String, nullable=True)
    moon_sign = Column(String, nullable=True)
    nakshatra = Column(String, nullable=True)
    manglik = Column(Boolean, nullable=True)
    tier = Column(String, nullable=False, default="free")
    last_active_at = Column(DateTime(timezone=True), nullable=True)
    profile_completeness = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    is_approved = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_match_profile_gender_active", "gender", "is_active"),)


class MatchPreferences(Base):
    __tablename__ = "match_preferences"

    user_id = Column(String, primary_key=True)
    min_age = Column(Integer, nullable=True)
    max_age = Column(Integer, nullable=True)
    min_height_cm = Column(Integer, nullable=True)
    max_height_cm = Column(Integer, nullable=True)
    min_income = Column(Float, nullable=True)
    max_income = Column(Float, nullable=True)
    genders_json = Column(Text, nullable=True)
    religions_json = Column(Text, nullable=True)
    castes_json = Column(Text, nullable=True)
    mother_tongues_json = Column(Text, nullable=True)
    countries_json = Column(Text, nullable=True)
    education_levels_json = Column(Text, nullable=True)
    marital_statuses_json = Column(Text, nullable=True)
    diets_json = Column(Text, nullable=True)
    no_bar_json = Column(Text, nullable=True)
    min_compatibility = Column(Float, nullable=False, default=0)
