# agentfails/models.py
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.sql import false, func

from .db import Base


class Member(Base):
    __tablename__ = "members"
    id = Column(Integer, primary_key=True, index=True)
    wallet_address = Column(String(42), unique=True, index=True, nullable=False)    # lower-case 0x...
    payment_tx_hash = Column(String(66), unique=True, index=True, nullable=False)   # lower-case 0x...
    payment_amount = Column(Numeric(18, 6), nullable=False)                         # token units, e.g. 2.00
    payment_currency = Column(String(16), nullable=False, default="USDC", server_default="USDC")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Post(Base):
    __tablename__ = "posts"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    image_url = Column(String(1000))
    agent = Column(String(50), index=True)                 # openclaw | claude | gpt | ...
    author_wallet = Column(String(42), index=True, nullable=False)
    author_name = Column(String(80))
    upvote_count = Column(Integer, nullable=False, default=0, server_default="0")
    hidden = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class Comment(Base):
    __tablename__ = "comments"
    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id"), index=True, nullable=False)
    content = Column(Text, nullable=False)
    author_wallet = Column(String(42), index=True, nullable=False)
    author_name = Column(String(80))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("post_id", "voter_wallet", name="uq_votes_post_voter"),)
    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id"), index=True, nullable=False)
    voter_wallet = Column(String(42), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (UniqueConstraint("post_id", "reporter_wallet", name="uq_reports_post_reporter"),)
    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id"), index=True, nullable=False)
    reporter_wallet = Column(String(42), index=True, nullable=False)
    reason = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
