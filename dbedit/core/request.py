# dbedit/core/request.py
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional
from urllib.parse import parse_qsl, quote, urlencode


@dataclass
class EditorRequest:
    """
    Snapshot of the parts of an HTTP request the editor reads.

    `url` is the request URI (path plus query string) as the browser sent it.
    Form values take precedence over query values of the same name.
    """
    method: str = "GET"
    url: str = "/"
    query: Dict[str, str] = field(default_factory=dict)
    form: Dict[str, str] = field(default_factory=dict)
    host: str = ""

    @classmethod
    def from_url(cls, url: str, method: str = "GET", form: Optional[Mapping[str, str]] = None,
                 host: str = "") -> "EditorRequest":
        _, _, query_string = url.partition("?")
        return cls(
            method=method,
            url=url,
            query=dict(parse_qsl(query_string, keep_blank_values=True)),
            form=dict(form or {}),
            host=host
        )

    def param(self, name: str) -> Optional[str]:
        if name in self.form:
            return self.form[name]
        return self.query.get(name)

    def has(self, name: str) -> bool:
        return name in self.form or name in self.query


def build_url(request_uri: str, params: Optional[Mapping[str, str]], reserved: Iterable[str],
              instance_param: Optional[str] = None, instance_id: Optional[str] = None) -> str:
    """
    Build a URL for the next editor request.

    The caller's own query parameters are carried over, except reserved ones
    and those being replaced by `params`. The instance id is appended last
    unless `params` already sets it.
    """
    qsa = dict(params or {})
    path, sep, query_string = request_uri.partition("?")

    if sep:
        reserved = set(reserved)
        for name, value in parse_qsl(query_string, keep_blank_values=True):
            if name not in qsa and name not in reserved:
                qsa[name] = value

    if instance_param and instance_id and instance_param not in qsa:
        qsa[instance_param] = instance_id

    if qsa:
        return f"{path}?{urlencode(qsa, quote_via=quote)}"
    return path
