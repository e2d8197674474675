import strawberry

from app.graphql.bookings.mutations import BookingMutations
from app.graphql.bookings.queries import BookingQueries
from app.graphql.class_sessions.mutations import ClassSessionMutations
from app.graphql.class_sessions.queries import ClassSessionQueries
from app.graphql.waitlist.mutations import WaitlistMutations
from app.graphql.waitlist.queries import WaitlistQueries


@strawberry.type
class Query(ClassSessionQueries, BookingQueries, WaitlistQueries):
    @strawberry.field
    def hello(self) -> str:
        return "Hello from GraphQL!"


@strawberry.type
class Mutation(ClassSessionMutations, BookingMutations, WaitlistMutations):
    pass


schema = strawberry.Schema(query=Query, mutation=Mutation)
