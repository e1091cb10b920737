from sqlalchemy import Column, String, Integer, JSON, Text
from livescreen.database import Base
from livescreen.models.enums import ModuleType, db_enum

class Subtest(Base):
    __tablename__ = "subtests"

    # Catalog code is the primary key (e.g. ORF_G2_PASSAGE_A)
    id = Column(String, primary_key=True, index=True)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    module_type = Column(db_enum(ModuleType, "module_type"), nullable=True, index=True)
    modality = Column(String, nullable=True)     # expressive | receptive
    grade = Column(String, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    item_count = Column(Integer, nullable=True)

    # Raw payloads from the YAML catalog
    stimulus_data = Column(JSON, nullable=True)  # {"items": [...]}
    timing_config = Column(JSON, nullable=True)  # {"duration_seconds": 60}
    script_prompt = Column(Text, nullable=True)

    @property
    def total_items(self) -> int:
        data = self.stimulus_data if isinstance(self.stimulus_data, dict) else {}
        items = data.get("items")
        if isinstance(items, list) and items:
            return len(items)
        return self.item_count or 0

    @property
    def duration_seconds(self) -> int | None:
        cfg = self.timing_config if isinstance(self.timing_config, dict) else {}
        value = cfg.get("duration_seconds")
        return int(value) if value else None
