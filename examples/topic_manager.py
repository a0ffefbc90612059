#!/usr/bin/env python3

import asyncio

from aiid import TopicManager

# Topic management

ACCESS_TOKEN = "your oauth2 access token"

registration_tokens = ["your token 1", "your token 2"]

topic = 'global'


async def main():
    topic_manager = TopicManager(ACCESS_TOKEN, debug=True)

    response = await topic_manager.subscribe(topic, registration_tokens)

    print(response)

    # Handling errors
    for error in response.errors:
        # Check for errors and act accordingly
        if error.reason == 'registration-token-not-registered':
            # Remove reg_ids from database
            print("Removing token: {0} from db"
                  .format(registration_tokens[error.index]))

    response = await topic_manager.unsubscribe(topic, registration_tokens)

    print(response)


asyncio.run(main())
