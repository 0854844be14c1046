from tutorchat.models.attachments import Attachment, Base, Conversation, ExtractionState, Message

__all__ = ["Attachment", "Base", "Conversation", "ExtractionState", "Message"]
