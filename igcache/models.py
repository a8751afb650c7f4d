from datetime import datetime, timezone

from sqlalchemy.dialects.postgresql import ARRAY, BYTEA, JSONB

from igcache import db


def utcnow():
    return datetime.now(timezone.utc)


class ImplementationGuide(db.Model):
    """One cached IG package: raw archive bytes plus derived metadata."""
    __tablename__ = 'fhir_implementation_guides'

    ig_package_id = db.Column(db.Text, primary_key=True)
    ig_package_version = db.Column(db.Text, primary_key=True)
    ig_package_meta = db.Column(db.JSON().with_variant(JSONB(), 'postgresql'), nullable=False)
    content_raw = db.Column(db.LargeBinary().with_variant(BYTEA(), 'postgresql'), nullable=False)
    dependencies = db.Column(db.JSON().with_variant(ARRAY(db.Text), 'postgresql'), nullable=False)
    # Set once on insert; upserts leave it alone
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f'<ImplementationGuide {self.ig_package_id}#{self.ig_package_version}>'
