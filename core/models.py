from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class MetadataModel(models.Model):
    """
    Abstract base for rows that carry an append-only JSON audit bag.
    Writers merge into the stored document; nothing replaces it wholesale.
    """
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        abstract = True

    def merge_metadata(self, **changes) -> dict:
        # keys with None values are skipped so an absent value never erases a recorded one
        merged = dict(self.metadata or {})
        merged.update({k: v for k, v in changes.items() if v is not None})
        self.metadata = merged
        return merged

    def meta(self, key, default=None):
        return (self.metadata or {}).get(key, default)
