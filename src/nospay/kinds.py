class Kinds:
    Seal = 13
    PrivateDirectMessage = 14
    FileMessage = 15
    GiftWrap = 1059

    @staticmethod
    def isDirectMessageKind(kind:int) -> bool:
        return kind in (Kinds.PrivateDirectMessage, Kinds.FileMessage)
