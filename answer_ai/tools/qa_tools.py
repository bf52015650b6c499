"""问答站点的固定检索工具注册表。

工具的业务逻辑（问题/回答/评论/标签/用户检索）由站点后端实现，
这里只负责：
- 声明暴露给模型的工具 schema（qa_tool_defs）。
- 把工具名映射到 QASearchBackend 上的方法（qa_tool_handlers）。
"""

from typing import Any, Callable, Dict, List, Protocol

from .definitions import ToolDef, ToolParam


ToolFunc = Callable[[Dict[str, Any]], str]
NO_RESULT = "No result found"

# 工具参数键，与站点 MCP 接口的检索条件保持一致
COND_KEYWORD = "keyword"
COND_USERNAME = "username"
COND_TAG = "tag"
COND_SCORE = "score"
COND_QUESTION_ID = "question_id"
COND_OBJECT_ID = "object_id"
COND_TAG_NAME = "tag_name"


class QASearchBackend(Protocol):
    """站点检索服务协议，每个方法返回工具结果文本，失败时抛出异常。"""

    def search_questions(self, keyword: str, username: str, tag: str, score: str) -> str:
        ...

    def answers_by_question(self, question_id: str) -> str:
        ...

    def search_comments(self, object_id: str) -> str:
        ...

    def search_tags(self, tag_name: str) -> str:
        ...

    def tag_detail(self, tag_name: str) -> str:
        ...

    def user_detail(self, username: str) -> str:
        ...


def _string_param(name: str, description: str) -> ToolParam:
    return ToolParam(name=name, description=description, required=False, schema={"type": "string"})


def _arg(args: Dict[str, Any], key: str) -> str:
    value = args.get(key)
    return "" if value is None else str(value)


def qa_tool_defs() -> List[ToolDef]:
    return [
        ToolDef(
            name="get_questions",
            description=(
                "Searching for questions that already existed in the system. After the search, "
                "you can use the get_answers_by_question_id tool to get answers for the questions."
            ),
            params={
                COND_KEYWORD: _string_param(
                    COND_KEYWORD, "Keyword to search for questions. Multiple keywords separated by spaces"
                ),
                COND_USERNAME: _string_param(
                    COND_USERNAME, "Search for questions that contain only those created by the specified user"
                ),
                COND_TAG: _string_param(COND_TAG, "Filter by tag (semicolon separated for multiple tags)"),
                COND_SCORE: _string_param(COND_SCORE, "Minimum score that the question must have"),
            },
        ),
        ToolDef(
            name="get_answers_by_question_id",
            description=(
                "Search for all answers corresponding to the question ID. "
                "The question ID is provided by get_questions tool."
            ),
            params={
                COND_QUESTION_ID: _string_param(
                    COND_QUESTION_ID,
                    "The ID of the question to which the answer belongs. "
                    "The question ID is provided by get_questions tool.",
                ),
            },
        ),
        ToolDef(
            name="get_comments",
            description="Searching for comments that already existed in the system",
            params={
                COND_OBJECT_ID: _string_param(
                    COND_OBJECT_ID,
                    "Queries comments on an object, either a question or an answer. "
                    "object_id is the id of the object.",
                ),
            },
        ),
        ToolDef(
            name="get_tags",
            description="Searching for tags that already existed in the system",
            params={COND_TAG_NAME: _string_param(COND_TAG_NAME, "Tag name")},
        ),
        ToolDef(
            name="get_tag_detail",
            description="Get detailed information about a specific tag",
            params={COND_TAG_NAME: _string_param(COND_TAG_NAME, "Tag name")},
        ),
        ToolDef(
            name="get_user",
            description="Searching for users that already existed in the system",
            params={COND_USERNAME: _string_param(COND_USERNAME, "Username")},
        ),
    ]


def _or_no_result(text: str) -> str:
    return text if text else NO_RESULT


def qa_tool_handlers(backend: QASearchBackend) -> Dict[str, ToolFunc]:
    """根据检索后端构造 name -> handler 的固定注册表。"""

    def _questions(args: Dict[str, Any]) -> str:
        return _or_no_result(
            backend.search_questions(
                keyword=_arg(args, COND_KEYWORD),
                username=_arg(args, COND_USERNAME),
                tag=_arg(args, COND_TAG),
                score=_arg(args, COND_SCORE),
            )
        )

    def _answers(args: Dict[str, Any]) -> str:
        return _or_no_result(backend.answers_by_question(_arg(args, COND_QUESTION_ID)))

    def _comments(args: Dict[str, Any]) -> str:
        return _or_no_result(backend.search_comments(_arg(args, COND_OBJECT_ID)))

    def _tags(args: Dict[str, Any]) -> str:
        return _or_no_result(backend.search_tags(_arg(args, COND_TAG_NAME)))

    def _tag_detail(args: Dict[str, Any]) -> str:
        return _or_no_result(backend.tag_detail(_arg(args, COND_TAG_NAME)))

    def _user(args: Dict[str, Any]) -> str:
        return _or_no_result(backend.user_detail(_arg(args, COND_USERNAME)))

    return {
        "get_questions": _questions,
        "get_answers_by_question_id": _answers,
        "get_comments": _comments,
        "get_tags": _tags,
        "get_tag_detail": _tag_detail,
        "get_user": _user,
    }
