from pydantic import BaseModel


class ScrollResult(BaseModel):
    """One scroll page, or every page collected by do_scroll_all().

    Attributes:
        result:           Raw point dicts.
        next_page_offset: Cursor for the next page; None once exhausted.
    """

    result: list[dict]
    next_page_offset: str | int | None = None
