"""Listing (post) model.

The posts table belongs to the marketplace; this service only reads the
owner and writes the promotion columns after a paid promotion product.
"""

from ollync.extensions import db


class Post(db.Model):
    __tablename__ = "posts"

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), nullable=False)
    title = db.Column(db.String(255), nullable=True)

    # --- Promotion ---
    boosted_until = db.Column(db.DateTime(timezone=True), nullable=True)
    sponsored_until = db.Column(db.DateTime(timezone=True), nullable=True)
    promotion_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Post {self.id}>"
