from tutorchat.repositories.attachments import AttachmentRepository, ConversationRepository

__all__ = ["AttachmentRepository", "ConversationRepository"]
