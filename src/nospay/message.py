import json

from .errors import MalformedInput
from .filter import Filter

class Message(Filter):
    def __init__(self):
        super(Message, self).__init__()

    def reqMessage(self, id:str, *filters:dict) -> str:
        return json.dumps(["REQ", id, *(filters or ({},))], separators=(',', ':'))

    def closeMessage(self, id:str) -> str:
        return json.dumps(["CLOSE", id], separators=(',', ':'))

    def parseRelayMessage(self, text:str|bytes) -> list|None:
        # None means "not a relay message, ignore it"; bad JSON is an error
        try:
            message = json.loads(text)
        except (ValueError, RecursionError) as e:
            # ValueError covers JSONDecodeError, bad UTF-8 and the int digit limit
            raise MalformedInput("relay message is not valid JSON", e) from e

        if not isinstance(message, list) or len(message) == 0: return None
        if not isinstance(message[0], str): return None

        return message
