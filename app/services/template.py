# app/services/template.py
"""
{{var}} 템플릿 치환
- get_by_path: "data.login_id" 같은 점(.) 경로로 값 꺼내기
- render: 응답 JSON 기준으로 {{data.key}} 치환 (못 찾으면 토큰 그대로 둠)
- substitute: 평평한 context(dict[str, str]) 기준 {{orderId}} 치환 (API url/body 용)
"""
import json
import re
from typing import Any, List, Mapping, Sequence

TOKEN_RE = re.compile(r"\{\{([^}]+)\}\}")


class _Undefined:
    """Lookup miss marker, distinct from a JSON null."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNDEFINED"


UNDEFINED = _Undefined()


def get_by_path(obj: Any, path: str) -> Any:
    result = obj
    for field in path.split("."):
        if result is None or result is UNDEFINED:
            return UNDEFINED
        if isinstance(result, Mapping):
            result = result.get(field, UNDEFINED)
        elif isinstance(result, Sequence) and not isinstance(result, (str, bytes)):
            # 배열은 "items.0.code" 처럼 숫자 인덱스로 접근
            if not field.lstrip("-").isdigit():
                return UNDEFINED
            idx = int(field)
            if idx < 0 or idx >= len(result):
                return UNDEFINED
            result = result[idx]
        else:
            return UNDEFINED
    return result


def to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def render(template: str, data: Any) -> str:
    def _replace(match: re.Match) -> str:
        value = get_by_path(data, match.group(1).strip())
        if value is UNDEFINED:
            return match.group(0)
        return to_text(value)

    return TOKEN_RE.sub(_replace, template)


def substitute(template: str, values: Mapping[str, str]) -> str:
    for key, value in values.items():
        template = template.replace("{{" + key + "}}", value)
    return template


def find_unresolved(text: str) -> List[str]:
    return [m.group(0) for m in TOKEN_RE.finditer(text)]
