"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给模型（ToolDef / ToolParam）。
- 在流式累积与分发过程中保存模型触发的工具调用（ToolCallDelta / ToolCall）。
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供模型调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam]

    def to_function_schema(self) -> Dict[str, Any]:
        """转换为 OpenAI function 形式的 schema，没有必填参数时省略 required。"""

        properties: Dict[str, Any] = {}
        required = []
        for name, param in self.params.items():
            prop = dict(param.schema)
            if param.description:
                prop.setdefault("description", param.description)
            properties[name] = prop
            if param.required:
                required.append(name)
        parameters: Dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            parameters["required"] = required
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass
class ToolCallDelta:
    """流式响应中某个槽位的一段工具调用片段。

    index 为上游协议中的槽位编号；name/id 通常只出现在该槽位的第一段，
    arguments 则是逐 token 到达的 JSON 文本片段。
    """

    index: int
    id: str = ""
    type: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求，arguments 为 JSON 对象字符串。"""

    id: str
    name: str
    arguments: str = ""
    type: str = "function"

    def append_arguments(self, fragment: Optional[str]) -> None:
        if fragment:
            self.arguments += fragment


@dataclass
class ToolResult:
    """工具执行结果的封装（文本形式）。"""

    call_id: str
    content: str
