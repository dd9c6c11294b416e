from sqlalchemy import String, orm

from typing_extensions import Annotated

str30 = Annotated[str, 30]
str128 = Annotated[str, 128]
str255 = Annotated[str, 255]


class Base(orm.DeclarativeBase):
    type_annotation_map = {
        str30: String(30),
        str128: String(128),
        str255: String(255),
    }
