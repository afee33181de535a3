"""Models for the fragments app.

FragmentMeta - one row of fragment metadata per (owner_id, fragment_id)
FragmentData - raw fragment bytes, used when the DB blob backend is selected
"""
from tortoise import fields, models


class FragmentMeta(models.Model):
    id = fields.IntField(pk=True)
    owner_id = fields.CharField(max_length=255, index=True)
    fragment_id = fields.CharField(max_length=255)
    type = fields.CharField(max_length=255)
    size = fields.IntField()
    # ISO-8601 strings exactly as the entity produced them
    created = fields.CharField(max_length=64)
    updated = fields.CharField(max_length=64)

    class Meta:
        default_connection = "default"
        table = "fragments_meta"
        unique_together = (("owner_id", "fragment_id"),)

    def to_record(self) -> dict:
        return {
            'id': self.fragment_id,
            'ownerId': self.owner_id,
            'created': self.created,
            'updated': self.updated,
            'type': self.type,
            'size': self.size,
        }


class FragmentData(models.Model):
    """Stores fragment bytes when using the database blob backend.

    The id is the blob key ``<owner_id>/<fragment_id>``.
    """
    id = fields.CharField(pk=True, max_length=512)
    data = fields.BinaryField()

    class Meta:
        default_connection = "default"
        table = "fragments_data"
