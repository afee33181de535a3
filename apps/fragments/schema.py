from pydantic import BaseModel, ConfigDict, Field

from apps.fragments.fragment import Fragment


class FragmentOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    owner_id: str = Field(..., alias='ownerId')
    created: str
    updated: str
    type: str
    size: int = Field(..., ge=0)

    @classmethod
    def from_fragment(cls, fragment: Fragment) -> 'FragmentOut':
        return cls.model_validate(fragment.to_record())

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)


class FragmentInfoOut(FragmentOut):
    """Metadata plus the types the fragment can be served as."""
    formats: list[str] = []

    @classmethod
    def from_fragment(cls, fragment: Fragment) -> 'FragmentInfoOut':
        return cls.model_validate({**fragment.to_record(), 'formats': list(fragment.formats or ())})
