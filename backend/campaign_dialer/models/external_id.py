"""External id: the token binding one call attempt to (campaign, dataset, row)."""

from dataclasses import dataclass

DEFAULT_MAX_LENGTH = 40
SEPARATOR = ":"


@dataclass(frozen=True)
class ExternalId:
    """
    Parsed external id.

    Encoded as ``campaign:datasetRef:row``. The provider limits the id to
    40 characters, so ``dataset_ref`` may be a truncated prefix of the real
    dataset id; the row index is never cut.
    """

    campaign_id: str
    dataset_ref: str
    row_index: int

    @classmethod
    def build(
        cls,
        campaign_id: str,
        dataset_id: str,
        row_index: int,
        max_length: int = DEFAULT_MAX_LENGTH,
    ) -> "ExternalId":
        """Build an id that fits in max_length, truncating the dataset reference if needed."""
        fixed = len(campaign_id) + len(str(row_index)) + 2 * len(SEPARATOR)
        room = max_length - fixed
        if room < 1:
            raise ValueError(
                f"External id for {campaign_id}/{row_index} cannot fit in {max_length} characters"
            )
        return cls(campaign_id=campaign_id, dataset_ref=dataset_id[:room], row_index=row_index)

    @classmethod
    def parse(cls, value: str | None) -> "ExternalId | None":
        """Parse ``campaign:datasetRef:row``; anything else yields None."""
        if not value:
            return None
        parts = value.split(SEPARATOR)
        if len(parts) != 3:
            return None
        campaign_id, dataset_ref, row_str = parts
        if not campaign_id or not dataset_ref:
            return None
        try:
            row_index = int(row_str)
        except ValueError:
            return None
        if row_index < 0:
            return None
        return cls(campaign_id=campaign_id, dataset_ref=dataset_ref, row_index=row_index)

    def encode(self) -> str:
        return SEPARATOR.join((self.campaign_id, self.dataset_ref, str(self.row_index)))

    def __str__(self) -> str:
        return self.encode()
